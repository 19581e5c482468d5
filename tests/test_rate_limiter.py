from __future__ import annotations

import threading
import time

import pytest

from crpt_api.cancellation import CancellationToken
from crpt_api.config.settings import RateLimitSettings
from crpt_api.domain.errors import AdmissionTimeoutError, CancellationError, ConfigurationError
from crpt_api.domain.ratelimit import RateLimiter
from crpt_api.observability.logging import configure_logging, get_logger


class FakeClock:
    """Millisecond clock whose sleep() advances time instead of blocking."""

    def __init__(self, start_ms: int = 0) -> None:
        self.now_ms = start_ms
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now_ms

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now_ms += int(round(seconds * 1000))


def _fake_limiter(clock: FakeClock, *, limit: int, window_ms: int, poll_interval_ms: int = 100) -> RateLimiter:
    return RateLimiter(
        limit=limit,
        window_ms=window_ms,
        poll_interval_ms=poll_interval_ms,
        clock=clock,
        sleep=clock.sleep,
        logger=get_logger().bind(component="test-limiter"),
    )


def _assert_quota_bound(stamps: list[int], *, limit: int, window_ms: int) -> None:
    for t in stamps:
        in_window = [s for s in stamps if t - window_ms < s <= t]
        assert len(in_window) <= limit, f"{len(in_window)} admissions in window ending at {t}"


def test_five_immediate_then_sixth_waits_for_window():
    configure_logging(level="ERROR", json_logs=True)
    clock = FakeClock()
    limiter = _fake_limiter(clock, limit=5, window_ms=1000)

    for _ in range(5):
        limiter.acquire()
    assert clock.now_ms == 0
    assert clock.sleeps == []

    limiter.acquire()

    # Admitted on the first poll at which the t=0 entries are out of (now - 1000, now].
    assert clock.now_ms == 1000
    assert len(clock.sleeps) == 10
    assert limiter.current_count() == 1


def test_sixth_call_blocks_about_one_window_in_real_time():
    configure_logging(level="ERROR", json_logs=True)
    limiter = RateLimiter(limit=5, window_ms=1000)

    start = time.monotonic()
    for _ in range(5):
        limiter.acquire()
    assert time.monotonic() - start < 0.1

    limiter.acquire()
    elapsed = time.monotonic() - start

    assert elapsed >= 0.9
    assert elapsed < 1.6


def test_limit_zero_is_rejected_at_construction():
    with pytest.raises(ConfigurationError):
        RateLimiter(limit=0, window_ms=1000)


def test_negative_window_is_rejected_at_construction():
    with pytest.raises(ConfigurationError):
        RateLimiter(limit=1, window_ms=-5)


def test_non_positive_poll_interval_is_rejected():
    with pytest.raises(ConfigurationError) as exc:
        RateLimiter(limit=1, window_ms=1000, poll_interval_ms=0)
    assert exc.value.details == {"poll_interval_ms": 0}


def test_from_settings_converts_window_units():
    settings = RateLimitSettings(time_unit="MINUTES", window_amount=2, request_limit=3, poll_interval_ms=50)
    limiter = RateLimiter.from_settings(settings)

    assert limiter.limit == 3
    assert limiter.window_ms == 120_000
    assert limiter.poll_interval_ms == 50


def test_from_settings_rejects_non_positive_limit():
    with pytest.raises(ConfigurationError):
        RateLimiter.from_settings(RateLimitSettings(request_limit=0))


def test_try_acquire_reports_retry_after_when_full():
    clock = FakeClock(start_ms=10_000)
    limiter = _fake_limiter(clock, limit=2, window_ms=1000)

    assert limiter.try_acquire().allowed
    clock.now_ms += 300
    assert limiter.try_acquire().allowed

    clock.now_ms += 100
    decision = limiter.try_acquire()
    assert not decision.allowed
    assert decision.retry_after_ms == 600
    assert limiter.current_count() == 2


def test_timeout_raises_with_retry_hint():
    configure_logging(level="ERROR", json_logs=True)
    clock = FakeClock()
    limiter = _fake_limiter(clock, limit=1, window_ms=1000)
    limiter.acquire()

    with pytest.raises(AdmissionTimeoutError) as exc:
        limiter.acquire(timeout_s=0.25)

    assert exc.value.code == "RATE_LIMITED"
    assert exc.value.retry_after_ms == 750
    # Last pause is clipped to the deadline.
    assert clock.sleeps == [0.1, 0.1, 0.05]
    assert limiter.current_count() == 1


def test_zero_window_admits_limit_per_tick():
    clock = FakeClock()
    limiter = _fake_limiter(clock, limit=1, window_ms=0, poll_interval_ms=1)

    limiter.acquire()
    limiter.acquire()

    assert clock.now_ms == 1


def test_backwards_clock_never_over_admits():
    clock = FakeClock(start_ms=1000)
    limiter = _fake_limiter(clock, limit=1, window_ms=1000)
    limiter.acquire()

    clock.now_ms = 500
    assert not limiter.try_acquire().allowed


def test_already_cancelled_token_does_not_consume_a_slot():
    configure_logging(level="ERROR", json_logs=True)
    limiter = RateLimiter(limit=1, window_ms=1000)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(CancellationError):
        limiter.acquire(cancel_token=token)

    assert limiter.current_count() == 0


def test_cancel_wakes_a_blocked_waiter_promptly():
    configure_logging(level="ERROR", json_logs=True)
    # Poll interval far longer than the test: only the token can wake the waiter.
    limiter = RateLimiter(limit=1, window_ms=60_000, poll_interval_ms=30_000)
    limiter.acquire()

    token = CancellationToken()
    outcome: list[BaseException] = []

    def waiter() -> None:
        try:
            limiter.acquire(cancel_token=token)
        except CancellationError as e:
            outcome.append(e)

    t = threading.Thread(target=waiter)
    t.start()
    time.sleep(0.1)
    assert t.is_alive()

    start = time.monotonic()
    token.cancel()
    t.join(timeout=2)

    assert not t.is_alive()
    assert time.monotonic() - start < 1.0
    assert len(outcome) == 1
    assert outcome[0].code == "CANCELLED"
    assert limiter.current_count() == 1


def test_concurrent_callers_only_limit_admitted_immediately():
    configure_logging(level="ERROR", json_logs=True)
    callers, limit = 8, 3
    poll_interval_ms = 100
    limiter = RateLimiter(limit=limit, window_ms=60_000, poll_interval_ms=poll_interval_ms)
    token = CancellationToken()
    barrier = threading.Barrier(callers)
    guard = threading.Lock()
    admitted: list[int] = []
    cancelled: list[int] = []

    def worker(i: int) -> None:
        barrier.wait()
        try:
            limiter.acquire(cancel_token=token)
        except CancellationError:
            with guard:
                cancelled.append(i)
        else:
            with guard:
                admitted.append(i)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(callers)]
    for t in threads:
        t.start()

    # One poll interval after the race: exactly `limit` in, everyone else still waiting.
    time.sleep(poll_interval_ms / 1000)
    with guard:
        assert len(admitted) == limit
        assert cancelled == []

    token.cancel()
    for t in threads:
        t.join(timeout=2)

    assert not any(t.is_alive() for t in threads)
    assert len(admitted) == limit
    assert len(cancelled) == callers - limit
    assert limiter.current_count() == limit


def test_waiters_all_admitted_in_unspecified_order_within_quota():
    configure_logging(level="ERROR", json_logs=True)
    callers, per_caller, limit, window_ms = 6, 4, 4, 100
    limiter = RateLimiter(limit=limit, window_ms=window_ms, poll_interval_ms=5)

    stamps: list[int] = []
    record = limiter._counter.record

    def spy(now_ms: int) -> None:
        # Runs under the limiter lock.
        stamps.append(now_ms)
        record(now_ms)

    limiter._counter.record = spy  # type: ignore[method-assign]

    finished: list[int] = []
    guard = threading.Lock()

    def worker(i: int) -> None:
        for _ in range(per_caller):
            limiter.acquire()
        with guard:
            finished.append(i)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(callers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert not any(t.is_alive() for t in threads)
    # Admission is not FIFO: only the set of finishers is checked, never their order.
    assert sorted(finished) == list(range(callers))
    assert len(stamps) == callers * per_caller
    _assert_quota_bound(stamps, limit=limit, window_ms=window_ms)
