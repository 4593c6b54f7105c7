import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from order_watch.models import ListRow
from order_watch.portal import selectors
from order_watch.portal.navigation import (
    OrderDetailNotReadyError,
    open_order_row,
    row_locator,
    wait_for_order_detail,
)
from order_watch.retry import RetryExhaustedError


class FakeCells:
    def __init__(self, texts: list[str]) -> None:
        self._texts = texts

    async def all_text_contents(self) -> list[str]:
        return list(self._texts)


class FakeRow:
    def __init__(self, page: "FakeTablePage", index: int) -> None:
        self._page = page
        self._index = index

    def locator(self, selector: str) -> FakeCells:
        return FakeCells(self._page.current_rows()[self._index])

    async def click(self, timeout: int | None = None) -> None:
        self._page.clicked.append(self._page.current_rows()[self._index][0])


class FakeRows:
    def __init__(self, page: "FakeTablePage") -> None:
        self._page = page

    def nth(self, index: int) -> FakeRow:
        return FakeRow(self._page, index)


class FakeContainer:
    def __init__(self, page: "FakeTablePage") -> None:
        self._page = page

    def locator(self, selector: str) -> FakeRows:
        self._page.selectors.append(selector)
        return FakeRows(self._page)


class FakeContainers:
    def __init__(self, page: "FakeTablePage") -> None:
        self._page = page

    def nth(self, index: int) -> FakeContainer:
        self._page.container_indexes.append(index)
        return FakeContainer(self._page)


class FakeTablePage:
    """Rows shift by one snapshot per reload, as when new orders arrive."""

    def __init__(self, snapshots: list[list[list[str]]]) -> None:
        self._snapshots = snapshots
        self.reloads = 0
        self.clicked: list[str] = []
        self.selectors: list[str] = []
        self.container_indexes: list[int] = []

    def current_rows(self) -> list[list[str]]:
        return self._snapshots[min(self.reloads, len(self._snapshots) - 1)]

    def locator(self, selector: str) -> FakeContainers:
        self.selectors.append(selector)
        return FakeContainers(self)

    async def reload(self, wait_until: str | None = None, timeout: int | None = None) -> None:
        self.reloads += 1


ROW = ListRow(
    order_id="A-2",
    status="新規",
    order_time=None,
    row_index=0,
    container_selector=selectors.ORDER_TABLE,
    container_index=0,
    row_selector=selectors.ORDER_TABLE_ROWS,
)


def test_row_locator_follows_row_coordinates() -> None:
    page = FakeTablePage([[["A-2", "12:00", "新規"]]])

    row_locator(page, ROW)

    assert page.selectors == [selectors.ORDER_TABLE, selectors.ORDER_TABLE_ROWS]
    assert page.container_indexes == [0]


@pytest.mark.asyncio
async def test_open_order_row_reloads_until_identity_matches(config, logger) -> None:
    page = FakeTablePage(
        [
            [[" A-3 ", "12:05", "新規"]],
            [["A-2", "12:00", "新規"]],
        ]
    )

    await open_order_row(page, ROW, config=config, logger=logger)

    assert page.reloads == 1
    assert page.clicked == ["A-2"]


@pytest.mark.asyncio
async def test_open_order_row_gives_up_after_configured_attempts(config, logger) -> None:
    page = FakeTablePage([[["A-9", "12:05", "新規"]]])

    with pytest.raises(RetryExhaustedError):
        await open_order_row(page, ROW, config=config, logger=logger)

    assert page.clicked == []
    assert page.reloads == config.row_open_attempts - 1


class FakeDetailPage:
    def __init__(self, *, ready: bool) -> None:
        self._ready = ready
        self.function_args: list[str] = []

    async def wait_for_load_state(self, state: str, timeout: int | None = None) -> None:
        raise PlaywrightTimeoutError("network busy")

    async def wait_for_selector(self, selector: str, state: str | None = None, timeout: int | None = None) -> None:
        assert selector == selectors.DETAIL_READY

    async def wait_for_function(self, script: str, arg=None, timeout: int | None = None) -> None:
        self.function_args.append(arg)
        if not self._ready:
            raise PlaywrightTimeoutError("Timeout exceeded")


@pytest.mark.asyncio
async def test_wait_for_order_detail_requires_order_id_term(config) -> None:
    page = FakeDetailPage(ready=True)

    await wait_for_order_detail(page, config=config)

    assert page.function_args == [selectors.DETAIL_ID_LABEL]


@pytest.mark.asyncio
async def test_wait_for_order_detail_raises_when_not_ready(config) -> None:
    with pytest.raises(OrderDetailNotReadyError):
        await wait_for_order_detail(FakeDetailPage(ready=False), config=config)
