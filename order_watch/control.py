"""Start/stop/status entry points for an embedding application.

These mirror what an HTTP layer would expose; they take the process-wide
:class:`~order_watch.monitoring.MonitoringSession` explicitly.
"""

from __future__ import annotations

from typing import Any, Dict

from order_watch.config import Config
from order_watch.json_logger import JsonLogger
from order_watch.models import OrderCallback
from order_watch.monitoring import MonitoringSession


def create_session(
    *, config: Config | None = None, logger: JsonLogger | None = None, launcher: Any = None
) -> MonitoringSession:
    return MonitoringSession(config=config, logger=logger, launcher=launcher)


async def start_monitoring(
    session: MonitoringSession,
    email: str,
    password: str,
    on_new_orders: OrderCallback,
) -> Dict[str, Any]:
    result = await session.start(email, password, on_new_orders)
    return result.as_dict()


async def stop_monitoring(session: MonitoringSession) -> None:
    await session.stop()


async def get_monitoring_status(session: MonitoringSession) -> bool:
    return await session.status()
