import asyncio
import json

import pytest

from monitoring_fakes import FakeBrowser, FakeLauncher, FakePage, FakePortal, make_config
from order_watch import monitoring
from order_watch.monitoring import Liveness, MonitoringSession, MonitoringState, StopReason


def _session(logger, launcher: FakeLauncher, **env: str) -> MonitoringSession:
    return MonitoringSession(config=make_config(**env), logger=logger, launcher=launcher)


def _ids(emitted: list[list[str]]) -> list[str]:
    return [order_id for batch in emitted for order_id in batch]


def _collector(emitted: list[list[str]]):
    async def _sink(batch) -> None:
        emitted.append([order.order_id for order in batch])

    return _sink


@pytest.mark.asyncio
async def test_each_order_is_emitted_once_per_session(monkeypatch, logger) -> None:
    portal = FakePortal([["A-1", "A-2"], ["A-3", "A-1", "A-2"]]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher)
    emitted: list[list[str]] = []

    result = await session.run("shop@example.com", "pw", _collector(emitted), max_cycles=3)

    assert result.success is True
    assert result.existing is False
    assert _ids(emitted) == ["A-1", "A-2", "A-3"]
    assert all(len(batch) == 1 for batch in emitted)
    assert portal.opens == {"A-1": 1, "A-2": 1, "A-3": 1}
    assert session.stop_reason is StopReason.REQUESTED
    assert session.state is MonitoringState.STOPPED
    assert len(launcher.browsers) == 1


@pytest.mark.asyncio
async def test_start_while_healthy_returns_existing_without_new_browser(monkeypatch, logger) -> None:
    portal = FakePortal([["A-1"]]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher, POLL_INTERVAL_SECONDS="0.01")

    first = await session.start("shop@example.com", "pw", _collector([]))
    second = await session.start("shop@example.com", "pw", _collector([]))

    assert first.as_dict() == {"success": True, "monitoring": True, "existing": False}
    assert second.as_dict() == {"success": True, "monitoring": True, "existing": True}
    assert len(launcher.browsers) == 1
    assert portal.logins == 1
    assert session.page.fronted == 1

    await session.stop()
    assert await session.status() is False
    assert session.stop_reason is StopReason.REQUESTED


@pytest.mark.asyncio
async def test_closed_window_stops_monitoring(monkeypatch, logger) -> None:
    FakePortal([["A-1"]]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher)
    await session.start("shop@example.com", "pw", _collector([]))

    session.page.closed = True
    assert await session.status() is False
    assert await session.probe() is Liveness.WINDOW_CLOSED

    await asyncio.wait_for(session.wait(), timeout=2)

    assert session.stop_reason is StopReason.WINDOW_CLOSED
    assert session.active is False
    assert len(launcher.browsers) == 1


@pytest.mark.asyncio
async def test_bad_row_is_skipped_and_abandoned_after_limit(monkeypatch, logger, log_stream) -> None:
    portal = FakePortal([["A-1", "BAD", "A-3"]], broken=["BAD"]).install(monkeypatch)
    session = _session(logger, FakeLauncher())
    emitted: list[list[str]] = []

    await session.run("shop@example.com", "pw", _collector(emitted), max_cycles=3)

    assert _ids(emitted) == ["A-1", "A-3"]
    assert portal.opens["BAD"] == 3
    failures = [
        event
        for event in map(json.loads, log_stream.getvalue().splitlines())
        if event["phase"] == "detail" and event.get("order_id") == "BAD"
    ]
    assert [event["status"] for event in failures] == ["warn", "warn", "error"]
    assert failures[-1]["message"] == "Abandoning order after repeated failures"


@pytest.mark.asyncio
async def test_missing_order_id_does_not_affect_later_rows(monkeypatch, logger) -> None:
    FakePortal([["A-1", "NOID", "A-3"]], missing_id=["NOID"]).install(monkeypatch)
    session = _session(logger, FakeLauncher())
    emitted: list[list[str]] = []

    await session.run("shop@example.com", "pw", _collector(emitted), max_cycles=1)

    assert _ids(emitted) == ["A-1", "A-3"]


@pytest.mark.asyncio
async def test_disconnected_browser_is_relaunched_and_orders_re_emitted(monkeypatch, logger) -> None:
    portal = FakePortal([["A-1"]]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher)
    emitted: list[list[str]] = []

    def _crash(read_count: int) -> None:
        if read_count == 2:
            launcher.browsers[0].connected = False

    portal.on_read = _crash

    await session.run("shop@example.com", "pw", _collector(emitted), max_cycles=3)

    assert len(launcher.browsers) == 2
    assert portal.logins == 2
    assert _ids(emitted) == ["A-1", "A-1"]
    assert session.stop_reason is StopReason.REQUESTED


@pytest.mark.asyncio
async def test_consecutive_errors_trigger_fresh_browser(monkeypatch, logger) -> None:
    boom = RuntimeError("list exploded")
    FakePortal([["A-1"], boom, boom, ["A-1"]]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher, MAX_CONSECUTIVE_ERRORS="2")
    emitted: list[list[str]] = []

    await session.run("shop@example.com", "pw", _collector(emitted), max_cycles=3)

    assert len(launcher.browsers) == 2
    assert _ids(emitted) == ["A-1", "A-1"]


@pytest.mark.asyncio
async def test_relaunch_failures_stop_with_recovery_failed(monkeypatch, logger) -> None:
    portal = FakePortal([["A-1"]], login_results=[True, False, False, False]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher)

    def _crash(read_count: int) -> None:
        if read_count == 2:
            launcher.browsers[0].connected = False

    portal.on_read = _crash

    await session.run("shop@example.com", "pw", _collector([]), max_cycles=10)

    assert session.stop_reason is StopReason.RECOVERY_FAILED
    assert len(launcher.browsers) == 4
    assert await session.status() is False


@pytest.mark.asyncio
async def test_login_failure_at_start_is_returned_and_cleaned_up(monkeypatch, logger) -> None:
    FakePortal([["A-1"]], login_results=[False]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher)

    result = await session.start("shop@example.com", "wrong", _collector([]))

    assert result.as_dict() == {
        "success": False,
        "monitoring": False,
        "existing": False,
        "error": "Login failed: rejected",
    }
    assert launcher.closed == launcher.browsers
    assert session.stop_reason is StopReason.LOGIN_FAILED
    assert session.active is False


@pytest.mark.asyncio
async def test_stop_tears_down_running_loop(monkeypatch, logger) -> None:
    FakePortal([["A-1"]]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher, POLL_INTERVAL_SECONDS="0.01")
    await session.start("shop@example.com", "pw", _collector([]))
    await asyncio.sleep(0.05)

    await session.stop()
    await asyncio.wait_for(session.wait(), timeout=1)

    assert session.browser is None
    assert session.page is None
    assert session.seen_order_ids == frozenset()
    assert launcher.browsers[0].connected is False
    assert launcher.shutdowns >= 1


@pytest.mark.asyncio
async def test_empty_list_emits_heartbeats(monkeypatch, logger) -> None:
    FakePortal([[]]).install(monkeypatch)
    session = _session(logger, FakeLauncher())
    emitted: list[list[str]] = []

    await session.run("shop@example.com", "pw", _collector(emitted), max_cycles=2)

    assert emitted == [[], []]


@pytest.mark.asyncio
async def test_consumer_errors_do_not_stop_monitoring(monkeypatch, logger, log_stream) -> None:
    FakePortal([["A-1", "A-2"]]).install(monkeypatch)
    session = _session(logger, FakeLauncher())
    calls: list[list[str]] = []

    def _failing_sink(batch) -> None:
        calls.append([order.order_id for order in batch])
        raise RuntimeError("database down")

    await session.run("shop@example.com", "pw", _failing_sink, max_cycles=2)

    assert calls == [["A-1"], ["A-2"]]
    assert session.stop_reason is StopReason.REQUESTED
    assert "Order consumer raised" in log_stream.getvalue()


@pytest.mark.asyncio
async def test_rows_are_processed_newest_first(monkeypatch, logger) -> None:
    FakePortal(
        [["B-old", "B-unknown", "B-new", "B-mid"]],
        order_times={
            "B-old": "2024年5月2日(木) 9:05",
            "B-mid": "2024/05/02 11:30",
            "B-new": "2024/05/02 12:45",
        },
    ).install(monkeypatch)
    session = _session(logger, FakeLauncher())
    emitted: list[list[str]] = []

    await session.run("shop@example.com", "pw", _collector(emitted), max_cycles=1)

    assert _ids(emitted) == ["B-new", "B-mid", "B-old", "B-unknown"]


@pytest.mark.asyncio
async def test_status_gives_up_on_a_frozen_page(monkeypatch, logger) -> None:
    monkeypatch.setattr(monitoring, "PROBE_TIMEOUT_SECONDS", 0.05)
    session = _session(logger, FakeLauncher())
    session.browser = FakeBrowser()
    session.page = FakePage()
    session.page.frozen = True

    assert await asyncio.wait_for(session.status(), timeout=2) is False
    assert await asyncio.wait_for(session.probe(), timeout=2) is Liveness.UNRESPONSIVE


@pytest.mark.asyncio
async def test_frozen_page_is_replaced_in_the_same_browser(monkeypatch, logger) -> None:
    monkeypatch.setattr(monitoring, "PROBE_TIMEOUT_SECONDS", 0.05)
    portal = FakePortal([["A-1"]]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher)
    emitted: list[list[str]] = []

    def _freeze(read_count: int) -> None:
        if read_count == 1:
            launcher.browsers[0].pages[0].frozen = True

    portal.on_read = _freeze

    await session.run("shop@example.com", "pw", _collector(emitted), max_cycles=2)

    browser = launcher.browsers[0]
    assert len(launcher.browsers) == 1
    assert len(browser.pages) == 2
    assert browser.pages[0].context.closed is True
    assert portal.logins == 2
    assert _ids(emitted) == ["A-1"]
    assert session.stop_reason is StopReason.REQUESTED


@pytest.mark.asyncio
async def test_repeated_page_replacement_leaves_one_open_context(monkeypatch, logger) -> None:
    FakePortal([["A-1"]]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher)
    session.browser = await launcher.launch()
    session.page = await launcher.open_page(session.browser)

    for _ in range(3):
        await session._reconstruct()

    assert session.browser.open_contexts == [session.page.context]


@pytest.mark.asyncio
async def test_lost_session_counts_as_transient_error(monkeypatch, logger, log_stream) -> None:
    portal = FakePortal([["A-1"], ["A-2", "A-1"]], session_results=[False]).install(monkeypatch)
    launcher = FakeLauncher()
    session = _session(logger, launcher)
    emitted: list[list[str]] = []

    await session.run("shop@example.com", "pw", _collector(emitted), max_cycles=2)

    assert _ids(emitted) == ["A-1", "A-2"]
    assert portal.session_checks == 2
    assert len(launcher.browsers) == 1
    assert session.stop_reason is StopReason.REQUESTED
    assert "SessionLostError" in log_stream.getvalue()
