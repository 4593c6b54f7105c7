import pytest

from monitoring_fakes import FakeLauncher, FakePortal, make_config
from order_watch.control import create_session, get_monitoring_status, start_monitoring, stop_monitoring


@pytest.mark.asyncio
async def test_control_surface_round_trip(monkeypatch, logger) -> None:
    FakePortal([["A-1"]]).install(monkeypatch)
    launcher = FakeLauncher()
    session = create_session(
        config=make_config(POLL_INTERVAL_SECONDS="0.01"), logger=logger, launcher=launcher
    )
    received = []

    started = await start_monitoring(session, "shop@example.com", "pw", received.append)
    again = await start_monitoring(session, "shop@example.com", "pw", received.append)

    assert started == {"success": True, "monitoring": True, "existing": False}
    assert again["existing"] is True
    assert await get_monitoring_status(session) is True

    await stop_monitoring(session)

    assert await get_monitoring_status(session) is False
    assert len(launcher.browsers) == 1
