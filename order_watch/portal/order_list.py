from __future__ import annotations

import asyncio
import contextlib
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from bs4 import BeautifulSoup, Tag
from dateutil import parser as date_parser
from playwright.async_api import Page

from order_watch.config import Config
from order_watch.json_logger import JsonLogger, log_event
from order_watch.models import ListRow, is_valid_order_id

from . import selectors
from .extractor import parse_document


class NoOrdersOrTimeout(RuntimeError):
    """Neither the order list nor the "no orders" indicator appeared in time."""


@dataclass(frozen=True)
class ListStrategy:
    name: str
    container_selector: str
    row_selector: str
    cell_selector: str
    requires_header_phrase: bool = False


LIST_STRATEGIES: Sequence[ListStrategy] = (
    ListStrategy(
        name="structural_hook",
        container_selector=selectors.ORDER_TABLE,
        row_selector=selectors.ORDER_TABLE_ROWS,
        cell_selector="td, th",
    ),
    ListStrategy(
        name="table_header_scan",
        container_selector="table",
        row_selector="tr",
        cell_selector="td, th",
        requires_header_phrase=True,
    ),
    ListStrategy(
        name="role_grid",
        container_selector=selectors.ORDER_GRID,
        row_selector=selectors.ORDER_GRID_ROWS,
        cell_selector=selectors.ORDER_GRID_CELLS,
    ),
)

_DEFAULT_COLUMNS = {"id": 0, "time": 1, "status": 2}


def _cell_text(cell: Tag) -> str:
    return " ".join(cell.get_text(" ").split())


def _has_header_phrase(text: str) -> bool:
    return any(phrase in text for phrase in selectors.HEADER_PHRASES)


def _column_map(header_cells: List[str]) -> dict[str, int]:
    columns = dict(_DEFAULT_COLUMNS)
    for index, text in enumerate(header_cells):
        if any(phrase in text for phrase in selectors.HEADER_ID_PHRASES):
            columns["id"] = index
        elif any(phrase in text for phrase in selectors.HEADER_TIME_PHRASES):
            columns["time"] = index
        elif any(phrase in text for phrase in selectors.HEADER_STATUS_PHRASES):
            columns["status"] = index
    return columns


def _cell_at(cells: List[str], index: int) -> Optional[str]:
    if index >= len(cells):
        return None
    return cells[index] or None


def _header_columns(container: Tag, strategy: ListStrategy) -> dict[str, int]:
    # Header rows may sit outside the data-row selector (e.g. in <thead>).
    for row in container.select(f"tr, {selectors.ORDER_GRID_ROWS}"):
        cells = [_cell_text(cell) for cell in row.select(strategy.cell_selector)]
        if cells and _has_header_phrase(cells[0]):
            return _column_map(cells)
    return dict(_DEFAULT_COLUMNS)


def _rows_from_container(
    container: Tag, *, strategy: ListStrategy, container_index: int
) -> List[ListRow]:
    rows: List[ListRow] = []
    columns = _header_columns(container, strategy)
    for row_index, row in enumerate(container.select(strategy.row_selector)):
        cells = [_cell_text(cell) for cell in row.select(strategy.cell_selector)]
        if not cells:
            continue
        if _has_header_phrase(cells[0]):
            continue
        order_id = _cell_at(cells, columns["id"])
        if not is_valid_order_id(order_id):
            continue
        rows.append(
            ListRow(
                order_id=order_id.strip(),
                status=_cell_at(cells, columns["status"]),
                order_time=_cell_at(cells, columns["time"]),
                row_index=row_index,
                container_selector=strategy.container_selector,
                container_index=container_index,
                row_selector=strategy.row_selector,
                strategy=strategy.name,
            )
        )
    return rows


def rows_for_strategy(soup: BeautifulSoup, strategy: ListStrategy) -> List[ListRow]:
    for container_index, container in enumerate(soup.select(strategy.container_selector)):
        if strategy.requires_header_phrase and not _has_header_phrase(container.get_text()):
            continue
        rows = _rows_from_container(container, strategy=strategy, container_index=container_index)
        if rows:
            return rows
    return []


def shows_no_orders(soup: BeautifulSoup) -> bool:
    text = soup.get_text()
    return any(phrase in text for phrase in selectors.NO_ORDERS_PHRASES)


def parse_order_rows(
    html: str, strategies: Sequence[ListStrategy] = LIST_STRATEGIES
) -> List[ListRow]:
    """Order rows in document order; the first strategy yielding rows wins."""

    soup = parse_document(html)
    for strategy in strategies:
        rows = rows_for_strategy(soup, strategy)
        if rows:
            return rows
    return []


# ── Display time ordering ────────────────────────────────────────────────────

_JP_DATE = re.compile(r"(\d{2,4})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日")
_WEEKDAY = re.compile(r"[（(]\s*[月火水木金土日]\s*[）)]")


def parse_display_time(text: str | None) -> datetime | None:
    if not text:
        return None
    cleaned = _WEEKDAY.sub(" ", text)
    cleaned = _JP_DATE.sub(lambda m: f"{m.group(1)}/{m.group(2)}/{m.group(3)}", cleaned)
    cleaned = cleaned.replace("時", ":").replace("分", "")
    cleaned = " ".join(cleaned.split())
    if not cleaned or not re.search(r"\d", cleaned):
        return None
    try:
        return date_parser.parse(cleaned)
    except (ValueError, OverflowError):
        return None


def sort_newest_first(rows: Sequence[ListRow]) -> List[ListRow]:
    """Newest displayed time first; ties and unparseable times keep list order."""

    dated: list[tuple[datetime, ListRow]] = []
    undated: List[ListRow] = []
    for row in rows:
        parsed = parse_display_time(row.order_time)
        if parsed is None:
            undated.append(row)
        else:
            dated.append((parsed.replace(tzinfo=None), row))
    dated.sort(key=lambda pair: pair[0], reverse=True)
    return [row for _, row in dated] + undated


# ── Live page ────────────────────────────────────────────────────────────────


async def wait_for_order_list(page: Page, *, timeout_ms: int) -> str:
    """Wait for the list or the "no orders" indicator; return which appeared."""

    tasks = {
        asyncio.create_task(
            page.wait_for_selector(selectors.ORDER_LIST_READY, timeout=timeout_ms)
        ): "list",
        asyncio.create_task(
            page.wait_for_selector(selectors.NO_ORDERS_TEXT, timeout=timeout_ms)
        ): "empty",
    }
    pending = set(tasks)
    try:
        while pending:
            done, pending = await asyncio.wait(
                pending,
                return_when=asyncio.FIRST_COMPLETED,
                timeout=timeout_ms / 1000,
            )
            if not done:
                break
            appeared = [tasks[task] for task in done if task.exception() is None]
            if appeared:
                return "list" if "list" in appeared else appeared[0]
    finally:
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
    raise NoOrdersOrTimeout(f"order list not ready within {timeout_ms}ms")


async def read_order_list(page: Page, *, config: Config, logger: JsonLogger) -> List[ListRow]:
    signal = await wait_for_order_list(page, timeout_ms=config.list_wait_timeout_ms)
    html = await page.content()
    rows = parse_order_rows(html)

    if not rows:
        log_event(
            logger=logger,
            phase="list",
            message="No orders on the order list",
            signal=signal,
            no_orders_indicator=shows_no_orders(parse_document(html)),
        )
        return []

    log_event(
        logger=logger,
        phase="list",
        message="Read order list",
        signal=signal,
        row_count=len(rows),
        strategy=rows[0].strategy,
    )
    return rows
