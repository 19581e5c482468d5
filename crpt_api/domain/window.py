from __future__ import annotations

from .errors import ConfigurationError


class WindowCounter:
    """Admissions in the trailing window ``(now - window_ms, now]``, keyed by millisecond.

    Admissions recorded at the same millisecond share one entry, so memory is
    bounded by distinct instants in the window rather than by call volume.

    Not thread-safe: the owning limiter holds its lock around every call.
    """

    def __init__(self, *, limit: int, window_ms: int) -> None:
        if limit <= 0:
            raise ConfigurationError(
                "limit must be a positive integer; a limiter with no quota would never admit.",
                details={"limit": limit},
            )
        if window_ms < 0:
            raise ConfigurationError("window length cannot be negative.", details={"window_ms": window_ms})

        self._limit = limit
        self._window_ms = window_ms
        self._events: dict[int, int] = {}

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def _cutoff(self, now_ms: int) -> int:
        # A zero-length window is treated as a single clock tick.
        return now_ms - max(self._window_ms, 1)

    def prune(self, now_ms: int) -> None:
        """Drop every entry at or before ``now_ms - window_ms``."""
        cutoff = self._cutoff(now_ms)
        # Full scan: an injected clock may have recorded keys out of order.
        stale = [k for k in self._events if k <= cutoff]
        for k in stale:
            del self._events[k]

    def count(self) -> int:
        return sum(self._events.values())

    def record(self, now_ms: int) -> None:
        self._events[now_ms] = self._events.get(now_ms, 0) + 1

    def has_capacity(self) -> bool:
        return self.count() < self._limit

    def retry_after_ms(self, now_ms: int) -> int:
        """Milliseconds until the oldest entry leaves the window (0 if empty)."""
        if not self._events:
            return 0
        oldest = min(self._events)
        return max(0, oldest + max(self._window_ms, 1) - now_ms)

    def snapshot(self) -> dict[int, int]:
        return dict(self._events)

    def __len__(self) -> int:
        return len(self._events)
