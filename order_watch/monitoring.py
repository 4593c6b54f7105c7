"""Long-running order monitor.

One :class:`MonitoringSession` owns the browser/page pair, the set of order
IDs already emitted and the background polling task. ``start`` logs in and
returns; the initial sweep and the poll loop then run as an asyncio task
until :meth:`MonitoringSession.stop` is called or recovery gives up.

Failures inside the loop are absorbed and logged. Callers only see them
through :meth:`MonitoringSession.status` turning false and ``stop_reason``.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from playwright.async_api import Browser, Page

from order_watch.browser import BrowserLauncher
from order_watch.config import Config, load_config
from order_watch.json_logger import JsonLogger, get_logger, log_event, timed_event
from order_watch.models import ListRow, OrderBatch, OrderCallback
from order_watch.portal.extractor import extract_order_detail
from order_watch.portal.navigation import (
    goto_order_list,
    is_on_order_list,
    open_order_row,
    reload_order_list,
    return_to_list,
    wait_for_order_detail,
)
from order_watch.portal.order_list import NoOrdersOrTimeout, read_order_list, sort_newest_first
from order_watch.portal.session import Credentials, LoginResult, ensure_session, login
from order_watch.retry import RetryAbortedError

STOP_GRACE_SECONDS = 5.0
PROBE_TIMEOUT_SECONDS = 10.0


class SessionLostError(RuntimeError):
    """The portal logged us out and re-login did not succeed."""


class WindowClosedError(RuntimeError):
    """The monitored window was closed while the browser kept running."""


class MonitoringStoppedError(RuntimeError):
    """Monitoring was deactivated while work was in flight."""


class RecoveryFailedError(RuntimeError):
    """Relaunching the browser failed too many times in a row."""


class MonitoringState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    INITIAL_SWEEP = "initial_sweep"
    POLLING = "polling"
    RECOVERING = "recovering"
    STOPPED = "stopped"


class StopReason(str, Enum):
    REQUESTED = "requested"
    WINDOW_CLOSED = "window_closed"
    RECOVERY_FAILED = "recovery_failed"
    LOGIN_FAILED = "login_failed"
    ERROR = "error"


class Liveness(str, Enum):
    HEALTHY = "healthy"
    WINDOW_CLOSED = "window_closed"
    DISCONNECTED = "disconnected"
    UNRESPONSIVE = "unresponsive"


@dataclass(frozen=True)
class StartResult:
    success: bool
    monitoring: bool
    existing: bool = False
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "monitoring": self.monitoring,
            "existing": self.existing,
        }
        if self.error:
            payload["error"] = self.error
        return payload


class MonitoringSession:
    def __init__(
        self,
        *,
        config: Config | None = None,
        logger: JsonLogger | None = None,
        launcher: Any = None,
    ) -> None:
        self.config = config or load_config()
        self.logger = logger or get_logger()
        self._launcher = launcher or BrowserLauncher(config=self.config, logger=self.logger)

        self.browser: Optional[Browser] = None
        self.page: Optional[Page] = None
        self.active = False
        self.state = MonitoringState.IDLE
        self.stop_reason: Optional[StopReason] = None
        self.cycles = 0

        self._credentials: Optional[Credentials] = None
        self._callback: Optional[OrderCallback] = None
        self._seen: Set[str] = set()
        self._row_failures: Dict[str, int] = {}
        self._abandoned: Set[str] = set()
        self._consecutive_errors = 0
        self._needs_sweep = False
        self._max_cycles: Optional[int] = None
        self._closing = False
        self._window_closed = False
        self._task: Optional[asyncio.Task] = None
        self._start_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    @property
    def seen_order_ids(self) -> frozenset[str]:
        return frozenset(self._seen)

    @property
    def abandoned_order_ids(self) -> frozenset[str]:
        return frozenset(self._abandoned)

    # ── Control ──────────────────────────────────────────────────────────────

    async def start(
        self,
        email: str,
        password: str,
        on_new_orders: OrderCallback,
        *,
        max_cycles: int | None = None,
    ) -> StartResult:
        async with self._start_lock:
            if self.active and await self.status():
                if self.page is not None:
                    with contextlib.suppress(Exception):
                        await self.page.bring_to_front()
                log_event(logger=self.logger, phase="init", message="Monitoring already running")
                return StartResult(success=True, monitoring=True, existing=True)

            # Stale handles from a dead or closed session.
            await self.stop()
            self._task = None
            self._credentials = Credentials(email=email, password=password)
            self._callback = on_new_orders
            self._max_cycles = max_cycles
            self.stop_reason = None
            self.cycles = 0
            self._window_closed = False
            self._stop_event = asyncio.Event()
            self.state = MonitoringState.AUTHENTICATING

            try:
                await self._open_browser()
                result = await login(
                    self.page, self._credentials, config=self.config, logger=self.logger
                )
            except Exception as exc:
                log_event(
                    logger=self.logger,
                    phase="init",
                    status="error",
                    message="Failed to open monitoring browser",
                    error=str(exc),
                )
                result = LoginResult(success=False, error=str(exc))

            if not result.success:
                await self._teardown()
                self.stop_reason = StopReason.LOGIN_FAILED
                self.state = MonitoringState.STOPPED
                return StartResult(success=False, monitoring=False, error=result.error)

            self.active = True
            self._reset_tracking()
            self._consecutive_errors = 0
            self._needs_sweep = True
            self._task = asyncio.create_task(self._run(), name="order-monitor")
            log_event(logger=self.logger, phase="init", message="Monitoring started")
            return StartResult(success=True, monitoring=True, existing=False)

    async def stop(self, reason: StopReason = StopReason.REQUESTED) -> None:
        was_active = self.active
        self.active = False
        self._stop_event.set()
        if self.stop_reason is None:
            self.stop_reason = reason
        await self._teardown()
        self.state = MonitoringState.STOPPED
        if was_active:
            log_event(
                logger=self.logger,
                phase="stop",
                message="Monitoring stopped",
                reason=self.stop_reason.value,
            )

        task = self._task
        if task is None or task is asyncio.current_task() or task.done():
            return
        done, _ = await asyncio.wait({task}, timeout=STOP_GRACE_SECONDS)
        if not done:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

    async def wait(self) -> None:
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def run(
        self,
        email: str,
        password: str,
        on_new_orders: OrderCallback,
        *,
        max_cycles: int | None = None,
    ) -> StartResult:
        result = await self.start(email, password, on_new_orders, max_cycles=max_cycles)
        if result.success and not result.existing:
            await self.wait()
        return result

    async def status(self) -> bool:
        browser, page = self.browser, self.page
        if browser is None or page is None:
            return False
        try:
            if not browser.is_connected():
                return False
            if page.is_closed():
                if not self._closing:
                    self._window_closed = True
                return False
            await asyncio.wait_for(page.evaluate("() => document.title"), PROBE_TIMEOUT_SECONDS)
            return True
        except Exception:
            return False

    async def probe(self) -> Liveness:
        browser, page = self.browser, self.page
        if browser is None or not browser.is_connected():
            return Liveness.DISCONNECTED
        if self._window_closed or (page is not None and page.is_closed()):
            return Liveness.WINDOW_CLOSED
        if page is None:
            return Liveness.UNRESPONSIVE
        try:
            await asyncio.wait_for(page.evaluate("() => document.title"), PROBE_TIMEOUT_SECONDS)
            return Liveness.HEALTHY
        except Exception:
            if not browser.is_connected():
                return Liveness.DISCONNECTED
            if page.is_closed():
                return Liveness.WINDOW_CLOSED
            return Liveness.UNRESPONSIVE

    # ── Loop ─────────────────────────────────────────────────────────────────

    async def _run(self) -> None:
        reason: Optional[StopReason] = None
        try:
            while self.active:
                try:
                    if self._needs_sweep:
                        self.state = MonitoringState.INITIAL_SWEEP
                        await self._sweep()
                        self._needs_sweep = False
                        self.state = MonitoringState.POLLING
                    else:
                        await self._poll_once()
                        self.cycles += 1
                    self._consecutive_errors = 0
                except MonitoringStoppedError:
                    break
                except WindowClosedError:
                    log_event(
                        logger=self.logger,
                        phase="poll",
                        status="error",
                        message="Monitoring window was closed; stopping",
                    )
                    reason = StopReason.WINDOW_CLOSED
                    break
                except RecoveryFailedError as exc:
                    log_event(
                        logger=self.logger,
                        phase="recovery",
                        status="error",
                        message="Browser recovery failed; stopping",
                        error=str(exc),
                    )
                    reason = StopReason.RECOVERY_FAILED
                    break
                except Exception as exc:
                    if not self.active:
                        break
                    if self._is_window_closed():
                        reason = StopReason.WINDOW_CLOSED
                        break
                    try:
                        await self._handle_iteration_error(exc)
                    except MonitoringStoppedError:
                        break
                    except RecoveryFailedError:
                        reason = StopReason.RECOVERY_FAILED
                        break
                    if not self._needs_sweep:
                        self.cycles += 1

                if self._max_cycles is not None and self.cycles >= self._max_cycles:
                    log_event(
                        logger=self.logger,
                        phase="poll",
                        message="Reached poll cycle limit",
                        cycles=self.cycles,
                    )
                    reason = StopReason.REQUESTED
                    break
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="poll",
                status="error",
                message="Monitoring loop crashed",
                error=str(exc),
            )
            reason = StopReason.ERROR
        finally:
            if self.active:
                await self.stop(reason or StopReason.ERROR)

    async def _sweep(self) -> None:
        processed = 0
        with timed_event(logger=self.logger, phase="sweep", message="Initial sweep"):
            await self._ensure_on_list()
            rows = await self._read_rows(heartbeat=False)
            for row in sort_newest_first(rows):
                self._ensure_active()
                if row.order_id in self._seen:
                    continue
                await self._process_row(row)
                processed += 1
        log_event(
            logger=self.logger,
            phase="sweep",
            message="Initial sweep finished",
            row_count=len(rows),
            processed=processed,
            emitted=len(self._seen),
        )

    async def _poll_once(self) -> None:
        await self._check_liveness()
        self._ensure_active()
        if not await ensure_session(
            self.page, self._credentials, config=self.config, logger=self.logger
        ):
            raise SessionLostError("re-login failed during polling")

        await self._ensure_on_list()
        rows = await self._read_rows(heartbeat=True)
        pending = [
            row
            for row in sort_newest_first(rows)
            if row.order_id not in self._seen and row.order_id not in self._abandoned
        ]
        if pending:
            log_event(
                logger=self.logger,
                phase="poll",
                message="Found unseen orders",
                count=len(pending),
                order_ids=[row.order_id for row in pending],
            )
        for row in pending:
            self._ensure_active()
            await self._process_row(row)

        if not pending:
            await self._sleep(self.config.poll_interval_seconds)
        self._ensure_active()
        await reload_order_list(self.page, config=self.config, logger=self.logger)

    async def _ensure_on_list(self) -> None:
        if await is_on_order_list(self.page):
            return
        await self._navigate(goto_order_list)

    async def _navigate(self, navigate: Any) -> None:
        try:
            await navigate(
                self.page,
                config=self.config,
                logger=self.logger,
                should_continue=self._should_continue,
            )
        except RetryAbortedError as exc:
            raise MonitoringStoppedError(str(exc)) from exc

    async def _read_rows(self, *, heartbeat: bool) -> List[ListRow]:
        try:
            rows = await read_order_list(self.page, config=self.config, logger=self.logger)
        except NoOrdersOrTimeout as exc:
            log_event(
                logger=self.logger,
                phase="list",
                status="warn",
                message="Order list did not render; treating as empty",
                error=str(exc),
            )
            return []
        if not rows and heartbeat:
            await self._emit([])
        return rows

    async def _process_row(self, row: ListRow) -> None:
        try:
            await self._navigate_row(row)
            await wait_for_order_detail(self.page, config=self.config)
            order = await extract_order_detail(
                self.page, status=row.status, list_order_time=row.order_time
            )
        except MonitoringStoppedError:
            raise
        except Exception as exc:
            self._ensure_active()
            if self._is_window_closed():
                raise WindowClosedError(str(exc)) from exc
            self._record_row_failure(row, str(exc))
            await self._recover_to_list()
            return

        if order is None:
            self._record_row_failure(row, "order detail has no order ID")
            await self._navigate(return_to_list)
            return

        self._seen.add(order.order_id)
        self._seen.add(row.order_id)
        self._row_failures.pop(row.order_id, None)
        await self._emit([order])
        await self._navigate(return_to_list)

    async def _navigate_row(self, row: ListRow) -> None:
        try:
            await open_order_row(
                self.page,
                row,
                config=self.config,
                logger=self.logger,
                should_continue=self._should_continue,
            )
        except RetryAbortedError as exc:
            raise MonitoringStoppedError(str(exc)) from exc

    async def _recover_to_list(self) -> None:
        try:
            await self._navigate(return_to_list)
        except MonitoringStoppedError:
            raise
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="detail",
                status="warn",
                message="Failed to return to order list after row error",
                error=str(exc),
            )

    def _record_row_failure(self, row: ListRow, error: str) -> None:
        count = self._row_failures.get(row.order_id, 0) + 1
        self._row_failures[row.order_id] = count
        row_logger = self.logger.bind(order_id=row.order_id, row_index=row.row_index)
        if count >= self.config.row_failure_limit:
            self._abandoned.add(row.order_id)
            row_logger.error(
                phase="detail",
                message="Abandoning order after repeated failures",
                failures=count,
                error=error,
            )
            return
        row_logger.warn(
            phase="detail",
            message="Failed to process order; will retry on a later poll",
            failures=count,
            error=error,
        )

    async def _emit(self, batch: OrderBatch) -> None:
        if self._callback is None:
            return
        try:
            result = self._callback(batch)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="emit",
                status="error",
                message="Order consumer raised",
                order_ids=[order.order_id for order in batch],
                error=str(exc),
            )
            return
        if batch:
            log_event(
                logger=self.logger,
                phase="emit",
                message="Emitted order",
                order_ids=[order.order_id for order in batch],
            )

    # ── Recovery ─────────────────────────────────────────────────────────────

    async def _handle_iteration_error(self, exc: Exception) -> None:
        self._consecutive_errors += 1
        log_event(
            logger=self.logger,
            phase="poll",
            status="warn",
            message="Poll iteration failed",
            error=str(exc),
            error_type=type(exc).__name__,
            consecutive_errors=self._consecutive_errors,
        )
        if self._consecutive_errors >= self.config.max_consecutive_errors:
            self.state = MonitoringState.RECOVERING
            await self._relaunch()
            self._consecutive_errors = 0
            return
        await self._sleep(self.config.error_backoff_seconds)

    async def _check_liveness(self) -> None:
        liveness = await self.probe()
        if liveness is Liveness.HEALTHY:
            return
        if liveness is Liveness.WINDOW_CLOSED:
            raise WindowClosedError("monitoring page closed")
        self.state = MonitoringState.RECOVERING
        log_event(
            logger=self.logger,
            phase="recovery",
            status="warn",
            message="Browser liveness check failed",
            liveness=liveness.value,
        )
        if liveness is Liveness.DISCONNECTED:
            await self._relaunch()
        else:
            await self._reconstruct()
        self.state = MonitoringState.POLLING

    async def _reconstruct(self) -> None:
        """Replace an unresponsive page inside the still-connected browser."""

        self._closing = True
        try:
            if self.page is not None:
                # Each page lives in its own context; closing it closes the page too.
                with contextlib.suppress(Exception):
                    await asyncio.wait_for(self.page.context.close(), PROBE_TIMEOUT_SECONDS)
                self.page = None
            self.page = await self._launcher.open_page(self.browser)
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="recovery",
                status="warn",
                message="Could not open a replacement page; relaunching",
                error=str(exc),
            )
            self._closing = False
            await self._relaunch()
            return
        self._closing = False

        result = await login(self.page, self._credentials, config=self.config, logger=self.logger)
        if not result.success:
            await self._relaunch()
            return
        log_event(logger=self.logger, phase="recovery", message="Replaced unresponsive page")

    async def _relaunch(self) -> None:
        """Tear the browser down and log in again; the seen set starts over."""

        attempts = self.config.max_relaunch_attempts
        last_error: str | None = None
        for attempt in range(1, attempts + 1):
            self._ensure_active()
            await self._close_handles()
            try:
                await self._open_browser()
                result = await login(
                    self.page, self._credentials, config=self.config, logger=self.logger
                )
            except Exception as exc:
                result = LoginResult(success=False, error=str(exc))
            self._ensure_active()

            if result.success:
                self._reset_tracking()
                self._needs_sweep = True
                self._window_closed = False
                log_event(
                    logger=self.logger,
                    phase="recovery",
                    message="Browser relaunched",
                    attempt=attempt,
                )
                return

            last_error = result.error
            log_event(
                logger=self.logger,
                phase="recovery",
                status="warn",
                message="Browser relaunch failed",
                attempt=attempt,
                max_attempts=attempts,
                error=last_error,
            )
            if attempt < attempts:
                await self._sleep(self.config.error_backoff_seconds)
        raise RecoveryFailedError(f"relaunch failed after {attempts} attempt(s): {last_error}")

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _should_continue(self) -> bool:
        return self.active

    def _ensure_active(self) -> None:
        if not self.active:
            raise MonitoringStoppedError("monitoring is no longer active")

    def _is_window_closed(self) -> bool:
        if self._closing or self.browser is None or self.page is None:
            return False
        try:
            return self.browser.is_connected() and self.page.is_closed()
        except Exception:
            return False

    def _reset_tracking(self) -> None:
        self._seen.clear()
        self._row_failures.clear()
        self._abandoned.clear()

    async def _sleep(self, seconds: float) -> None:
        if seconds > 0:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        self._ensure_active()

    async def _open_browser(self) -> None:
        self.browser = await self._launcher.launch()
        self.page = await self._launcher.open_page(self.browser)

    async def _close_handles(self) -> None:
        self._closing = True
        page, browser = self.page, self.browser
        try:
            if page is not None:
                try:
                    if not page.is_closed():
                        await page.close()
                except Exception as exc:
                    log_event(
                        logger=self.logger,
                        phase="stop",
                        status="warn",
                        message="Failed to close monitoring page",
                        error=str(exc),
                    )
            if browser is not None:
                await self._launcher.close_browser(browser)
        finally:
            self.page = None
            self.browser = None
            self._closing = False

    async def _teardown(self) -> None:
        try:
            await self._close_handles()
            await self._launcher.shutdown()
        finally:
            self._reset_tracking()
