from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from order_watch.json_logger import JsonLogger, log_event

T = TypeVar("T")


class RetryExhaustedError(RuntimeError):
    """Every attempt failed; ``last_error`` holds the final exception."""

    def __init__(self, label: str, attempts: int, last_error: BaseException | None) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label} failed after {attempts} attempt(s): {last_error}")


class RetryAbortedError(RuntimeError):
    """The caller asked to stop retrying (e.g. monitoring was stopped)."""


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    delay_seconds: float
    backoff_factor: float = 1.0
    max_delay_seconds: float = 30.0

    def wait_before(self, attempt: int) -> float:
        """Delay before ``attempt`` (2-based: there is no wait before the first)."""

        if self.delay_seconds <= 0 or attempt <= 1:
            return 0.0
        delay = self.delay_seconds * (self.backoff_factor ** (attempt - 2))
        return min(delay, self.max_delay_seconds)


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    *,
    policy: RetryPolicy,
    label: str,
    logger: JsonLogger,
    phase: str = "retry",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    should_continue: Optional[Callable[[], bool]] = None,
    on_retry: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or ``policy.attempts`` is spent.

    ``should_continue`` is checked before every attempt and after every sleep;
    returning False raises :class:`RetryAbortedError`. ``on_retry`` runs after a
    failed attempt that will be retried (used to reload the page between tries).
    """

    last_error: BaseException | None = None
    for attempt in range(1, policy.attempts + 1):
        wait = policy.wait_before(attempt)
        if wait:
            await asyncio.sleep(wait)
        if should_continue is not None and not should_continue():
            raise RetryAbortedError(f"{label} aborted before attempt {attempt}")
        try:
            return await operation(attempt)
        except retry_on as exc:
            last_error = exc
            if should_continue is not None and not should_continue():
                raise RetryAbortedError(f"{label} aborted after attempt {attempt}") from exc
            final = attempt >= policy.attempts
            log_event(
                logger=logger,
                phase=phase,
                status="error" if final else "warn",
                message=f"{label} failed" if final else f"{label} failed; retrying",
                attempt=attempt,
                max_attempts=policy.attempts,
                error=str(exc),
            )
            if not final and on_retry is not None:
                try:
                    await on_retry(attempt, exc)
                except Exception as retry_exc:
                    log_event(
                        logger=logger,
                        phase=phase,
                        status="warn",
                        message=f"{label} recovery step failed",
                        attempt=attempt,
                        error=str(retry_exc),
                    )
    raise RetryExhaustedError(label, policy.attempts, last_error)
