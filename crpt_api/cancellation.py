"""Cooperative cancellation for callers blocked on the rate limiter.

Python threads cannot be interrupted from outside, so a waiting ``acquire()``
sleeps on a :class:`CancellationToken` instead of ``time.sleep``. Cancelling the
token wakes the waiter at once and it raises
:class:`~crpt_api.domain.errors.CancellationError`.
"""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe cancellation flag.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.wait(0.0)
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout_s: float | None = None) -> bool:
        """Block up to ``timeout_s`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout_s)
