from __future__ import annotations

from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from order_watch.config import Config
from order_watch.json_logger import JsonLogger, log_event
from order_watch.models import ListRow
from order_watch.retry import RetryPolicy, retry_async

from . import selectors

_ROW_CELLS = "td, th, [role=gridcell], [role=cell], [role=rowheader]"

_DETAIL_ID_SCRIPT = """
(label) => Array.from(document.querySelectorAll('dt')).some(
    (dt) => (dt.textContent || '').includes(label)
)
"""


class OrderRowMismatchError(RuntimeError):
    """The row at the remembered position no longer shows the expected order."""


class OrderDetailNotReadyError(RuntimeError):
    """The order detail view did not render its definition list in time."""


def nav_policy(config: Config) -> RetryPolicy:
    return RetryPolicy(attempts=config.nav_retry_attempts, delay_seconds=config.nav_retry_delay_seconds)


def row_open_policy(config: Config) -> RetryPolicy:
    return RetryPolicy(
        attempts=config.row_open_attempts, delay_seconds=config.row_open_retry_delay_seconds
    )


async def is_on_order_list(page: Page) -> bool:
    try:
        return await page.query_selector(selectors.ORDER_LIST_READY) is not None
    except PlaywrightError:
        return False


async def goto_order_list(
    page: Page,
    *,
    config: Config,
    logger: JsonLogger,
    should_continue: Optional[Callable[[], bool]] = None,
    label: str = "Navigate to order list",
) -> None:
    async def _goto(attempt: int) -> None:
        await page.goto(config.order_list_url, wait_until="networkidle", timeout=config.nav_timeout_ms)

    await retry_async(
        _goto,
        policy=nav_policy(config),
        label=label,
        logger=logger,
        phase="navigation",
        retry_on=(PlaywrightError,),
        should_continue=should_continue,
    )


async def return_to_list(
    page: Page,
    *,
    config: Config,
    logger: JsonLogger,
    should_continue: Optional[Callable[[], bool]] = None,
) -> None:
    await goto_order_list(
        page,
        config=config,
        logger=logger,
        should_continue=should_continue,
        label="Return to order list",
    )


async def reload_order_list(page: Page, *, config: Config, logger: JsonLogger) -> bool:
    """Best-effort refresh between polls; failures are logged, not raised."""

    try:
        await page.reload(wait_until="networkidle", timeout=config.nav_timeout_ms)
        return True
    except PlaywrightError as exc:
        log_event(
            logger=logger,
            phase="poll",
            status="warn",
            message="Order list reload failed",
            error=str(exc),
        )
        return False


def row_locator(page: Page, row: ListRow) -> Locator:
    return (
        page.locator(row.container_selector)
        .nth(row.container_index)
        .locator(row.row_selector)
        .nth(row.row_index)
    )


async def open_order_row(
    page: Page,
    row: ListRow,
    *,
    config: Config,
    logger: JsonLogger,
    should_continue: Optional[Callable[[], bool]] = None,
) -> None:
    """Click ``row`` after checking it still shows ``row.order_id``.

    The list is reloaded between attempts because rows shift as new orders
    arrive. Raises :class:`~order_watch.retry.RetryExhaustedError` when every
    attempt fails.
    """

    async def _open(attempt: int) -> None:
        locator = row_locator(page, row)
        cells = [text.strip() for text in await locator.locator(_ROW_CELLS).all_text_contents()]
        if row.order_id not in cells:
            raise OrderRowMismatchError(
                f"row {row.row_index} shows {cells[:1] or 'nothing'} instead of {row.order_id}"
            )
        await locator.click(timeout=config.nav_timeout_ms)

    async def _reload(attempt: int, exc: BaseException) -> None:
        await page.reload(wait_until="networkidle", timeout=config.nav_timeout_ms)

    await retry_async(
        _open,
        policy=row_open_policy(config),
        label=f"Open order {row.order_id}",
        logger=logger,
        phase="detail",
        retry_on=(OrderRowMismatchError, PlaywrightError),
        should_continue=should_continue,
        on_retry=_reload,
    )


async def wait_for_order_detail(page: Page, *, config: Config) -> None:
    timeout = config.detail_wait_timeout_ms
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout)
    except PlaywrightTimeoutError:
        # Long-polling widgets can keep the network busy; the DOM checks decide.
        pass
    try:
        await page.wait_for_selector(selectors.DETAIL_READY, state="visible", timeout=timeout)
        await page.wait_for_function(_DETAIL_ID_SCRIPT, arg=selectors.DETAIL_ID_LABEL, timeout=timeout)
    except PlaywrightTimeoutError as exc:
        raise OrderDetailNotReadyError(f"order detail not ready within {timeout}ms") from exc
