from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from ..cancellation import CancellationToken
from ..observability.logging import get_logger
from .errors import AdmissionTimeoutError, CancellationError, ConfigurationError
from .window import WindowCounter

if TYPE_CHECKING:
    from ..config.settings import RateLimitSettings


def monotonic_ms() -> int:
    """Default clock: ``time.monotonic_ns`` truncated to milliseconds.

    Monotonic so a wall-clock adjustment cannot shrink or stretch the window.
    """
    return time.monotonic_ns() // 1_000_000


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_ms: int | None


class _SlidingWindowLimiter:
    """Shared state for the blocking and the asyncio limiters.

    Subclasses own the lock; ``_decide`` must only run while it is held.
    Admission among waiters is not FIFO: whoever wins the lock next while a
    slot is free is admitted.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_ms: int,
        poll_interval_ms: int = 100,
        clock: Callable[[], int] = monotonic_ms,
        logger: Any = None,
    ) -> None:
        if poll_interval_ms <= 0:
            raise ConfigurationError(
                "poll interval must be positive.",
                details={"poll_interval_ms": poll_interval_ms},
            )
        self._counter = WindowCounter(limit=limit, window_ms=window_ms)
        self._poll_interval_ms = poll_interval_ms
        self._clock = clock
        self._logger = logger if logger is not None else get_logger().bind(component="rate-limiter")

    @classmethod
    def from_settings(cls, settings: RateLimitSettings, **kwargs: Any):
        return cls(
            limit=settings.request_limit,
            window_ms=settings.window_ms,
            poll_interval_ms=settings.poll_interval_ms,
            **kwargs,
        )

    @property
    def limit(self) -> int:
        return self._counter.limit

    @property
    def window_ms(self) -> int:
        return self._counter.window_ms

    @property
    def poll_interval_ms(self) -> int:
        return self._poll_interval_ms

    def _decide(self) -> RateLimitDecision:
        now = self._clock()
        self._counter.prune(now)
        if self._counter.has_capacity():
            self._counter.record(now)
            return RateLimitDecision(allowed=True, retry_after_ms=None)
        return RateLimitDecision(allowed=False, retry_after_ms=self._counter.retry_after_ms(now))

    def _deadline(self, timeout_s: float | None) -> int | None:
        if timeout_s is None:
            return None
        return self._clock() + int(timeout_s * 1000)

    def _next_pause_ms(self, *, deadline_ms: int | None, decision: RateLimitDecision, polls: int) -> int:
        """Length of the next sleep; raises once the deadline has passed."""

        if deadline_ms is None:
            return self._poll_interval_ms

        remaining_ms = deadline_ms - self._clock()
        if remaining_ms <= 0:
            self._logger.info("ratelimit.timeout", polls=polls, retry_after_ms=decision.retry_after_ms)
            raise AdmissionTimeoutError(
                "No admission slot became free before the timeout.",
                retry_after_ms=decision.retry_after_ms,
                details={"limit": self.limit, "window_ms": self.window_ms},
            )
        return min(self._poll_interval_ms, remaining_ms)

    def _log_admitted(self, polls: int) -> None:
        if polls:
            self._logger.debug("ratelimit.admitted", waited_polls=polls)
        else:
            self._logger.debug("ratelimit.admitted")


class RateLimiter(_SlidingWindowLimiter):
    """Blocking sliding-window limiter shared by any number of threads.

    ``acquire()`` returns only after recording an admission. The lock covers the
    prune/count/record step only and is released while the caller sleeps.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_ms: int,
        poll_interval_ms: int = 100,
        clock: Callable[[], int] = monotonic_ms,
        sleep: Callable[[float], None] = time.sleep,
        logger: Any = None,
    ) -> None:
        super().__init__(
            limit=limit,
            window_ms=window_ms,
            poll_interval_ms=poll_interval_ms,
            clock=clock,
            logger=logger,
        )
        self._sleep = sleep
        self._lock = threading.Lock()

    def try_acquire(self) -> RateLimitDecision:
        """Single non-blocking attempt."""
        with self._lock:
            return self._decide()

    def acquire(self, *, timeout_s: float | None = None, cancel_token: CancellationToken | None = None) -> None:
        deadline_ms = self._deadline(timeout_s)
        polls = 0
        while True:
            if cancel_token is not None and cancel_token.is_cancelled():
                self._logger.info("ratelimit.cancelled", polls=polls)
                raise CancellationError(details={"polls": polls})

            decision = self.try_acquire()
            if decision.allowed:
                self._log_admitted(polls)
                return

            pause_ms = self._next_pause_ms(deadline_ms=deadline_ms, decision=decision, polls=polls)
            if polls == 0:
                self._logger.debug("ratelimit.wait", retry_after_ms=decision.retry_after_ms)
            polls += 1

            if cancel_token is not None:
                # Returns early when cancelled; the check at the top raises.
                cancel_token.wait(pause_ms / 1000)
            else:
                self._sleep(pause_ms / 1000)

    def current_count(self) -> int:
        with self._lock:
            self._counter.prune(self._clock())
            return self._counter.count()


class AsyncRateLimiter(_SlidingWindowLimiter):
    """asyncio flavour of :class:`RateLimiter` for tasks on a single event loop.

    Cancelling the waiting task raises ``asyncio.CancelledError`` out of
    ``acquire()`` unchanged.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_ms: int,
        poll_interval_ms: int = 100,
        clock: Callable[[], int] = monotonic_ms,
        logger: Any = None,
    ) -> None:
        super().__init__(
            limit=limit,
            window_ms=window_ms,
            poll_interval_ms=poll_interval_ms,
            clock=clock,
            logger=logger,
        )
        self._lock = asyncio.Lock()

    async def try_acquire(self) -> RateLimitDecision:
        async with self._lock:
            return self._decide()

    async def acquire(self, *, timeout_s: float | None = None) -> None:
        deadline_ms = self._deadline(timeout_s)
        polls = 0
        try:
            while True:
                decision = await self.try_acquire()
                if decision.allowed:
                    self._log_admitted(polls)
                    return

                pause_ms = self._next_pause_ms(deadline_ms=deadline_ms, decision=decision, polls=polls)
                if polls == 0:
                    self._logger.debug("ratelimit.wait", retry_after_ms=decision.retry_after_ms)
                polls += 1
                await asyncio.sleep(pause_ms / 1000)
        except asyncio.CancelledError:
            self._logger.info("ratelimit.cancelled", polls=polls)
            raise

    async def current_count(self) -> int:
        async with self._lock:
            self._counter.prune(self._clock())
            return self._counter.count()
