from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from order_watch.browser import BrowserLauncher
from order_watch.config import Config
from order_watch.json_logger import JsonLogger, log_event
from order_watch.models import Order
from order_watch.portal.extractor import extract_order_detail
from order_watch.portal.navigation import (
    goto_order_list,
    is_on_order_list,
    open_order_row,
    wait_for_order_detail,
)
from order_watch.portal.order_list import NoOrdersOrTimeout, read_order_list
from order_watch.portal.session import Credentials, login

NO_ACCESSIBLE_ORDERS = "No orders found. Please verify you have access to view orders."


@dataclass(frozen=True)
class ScrapeResult:
    success: bool
    orders: List[Order] = field(default_factory=list)
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.success:
            payload["orders"] = [order.as_dict() for order in self.orders]
        if self.error:
            payload["error"] = self.error
        return payload


async def _back_to_list(page: Any, *, config: Config, logger: JsonLogger) -> None:
    await goto_order_list(page, config=config, logger=logger)


async def scrape_orders(
    email: str,
    password: str,
    *,
    config: Config,
    logger: JsonLogger,
    launcher: Any = None,
) -> ScrapeResult:
    """Log in with a fresh browser, read every listed order once and close.

    Rows whose detail view has no order ID, or that fail to open, are skipped.
    """

    launcher = launcher or BrowserLauncher(config=config, logger=logger)
    credentials = Credentials(email=email, password=password)
    browser = None
    try:
        browser = await launcher.launch()
        page = await launcher.open_page(browser)

        result = await login(page, credentials, config=config, logger=logger)
        if not result.success:
            return ScrapeResult(success=False, error=result.error)

        await _back_to_list(page, config=config, logger=logger)
        try:
            rows = await read_order_list(page, config=config, logger=logger)
        except NoOrdersOrTimeout as exc:
            return ScrapeResult(success=False, error=f"Failed to fetch orders: {exc}")
        if not rows:
            return ScrapeResult(success=True, orders=[])

        orders: List[Order] = []
        for row in rows:
            row_logger = logger.bind(order_id=row.order_id, row_index=row.row_index)
            try:
                if not await is_on_order_list(page):
                    await _back_to_list(page, config=config, logger=logger)
                await open_order_row(page, row, config=config, logger=logger)
                await wait_for_order_detail(page, config=config)
                order = await extract_order_detail(
                    page, status=row.status, list_order_time=row.order_time
                )
            except Exception as exc:
                row_logger.warn(
                    phase="scrape",
                    message="Skipping order that could not be read",
                    error=str(exc),
                )
                await _back_to_list(page, config=config, logger=logger)
                continue

            if order is None:
                row_logger.warn(phase="scrape", message="Order detail has no order ID; skipping")
            else:
                orders.append(order)
            await _back_to_list(page, config=config, logger=logger)

        log_event(
            logger=logger,
            phase="scrape",
            message="Scrape finished",
            row_count=len(rows),
            order_count=len(orders),
        )
        if not orders:
            return ScrapeResult(success=False, error=NO_ACCESSIBLE_ORDERS)
        return ScrapeResult(success=True, orders=orders)
    except Exception as exc:
        log_event(
            logger=logger,
            phase="scrape",
            status="error",
            message="Scrape failed",
            error=str(exc),
        )
        return ScrapeResult(success=False, error=f"Failed to fetch orders: {exc}")
    finally:
        await launcher.close_browser(browser)
        await launcher.shutdown()
