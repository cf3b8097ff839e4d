"""
Unit tests for the fixed-window login rate limiter, driven by a fake clock.
"""

from __future__ import annotations

import threading

from backend.app.services.rate_limiter import FixedWindowRateLimiter


class FakeClock:

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_allows_up_to_max_attempts_then_blocks():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_attempts=10, window_seconds=3600, clock=clock)

    decisions = [limiter.consume("1.1.1.1") for _ in range(10)]
    assert all(d.allowed for d in decisions)
    assert decisions[-1].remaining == 0

    blocked = limiter.consume("1.1.1.1")
    assert not blocked.allowed
    assert blocked.retry_after == 3600


def test_retry_after_counts_down():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_attempts=1, window_seconds=60, clock=clock)
    limiter.consume("ip")
    clock.now += 45.2
    assert limiter.consume("ip").retry_after == 15


def test_window_resets_after_it_elapses():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_attempts=2, window_seconds=60, clock=clock)
    limiter.consume("ip")
    limiter.consume("ip")
    assert not limiter.consume("ip").allowed

    clock.now += 60
    decision = limiter.consume("ip")
    assert decision.allowed
    assert decision.remaining == 1


def test_keys_are_independent():
    limiter = FixedWindowRateLimiter(max_attempts=1, window_seconds=60, clock=FakeClock())
    assert limiter.consume("a").allowed
    assert not limiter.consume("a").allowed
    assert limiter.consume("b").allowed


def test_reset_one_key_or_all():
    limiter = FixedWindowRateLimiter(max_attempts=1, window_seconds=60, clock=FakeClock())
    limiter.consume("a")
    limiter.consume("b")

    limiter.reset("a")
    assert limiter.consume("a").allowed
    assert not limiter.consume("b").allowed

    limiter.reset()
    assert limiter.consume("b").allowed


def test_concurrent_attempts_never_exceed_budget():
    limiter = FixedWindowRateLimiter(max_attempts=10, window_seconds=3600, clock=FakeClock())
    results = []
    lock = threading.Lock()

    def attempt():
        decision = limiter.consume("shared")
        with lock:
            results.append(decision.allowed)

    threads = [threading.Thread(target=attempt) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 10


def test_elapsed_windows_for_other_keys_are_swept():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_attempts=10, window_seconds=3600, clock=clock)
    for i in range(10_000):
        limiter.consume(f"10.0.{i // 256}.{i % 256}")
    assert limiter.tracked_keys == 10_000

    clock.now += 3601
    limiter.consume("192.168.0.1")

    assert limiter.tracked_keys == 1


def test_sweep_keeps_windows_that_are_still_open():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_attempts=2, window_seconds=3600, clock=clock)
    limiter.consume("old")
    clock.now += 1800
    limiter.consume("recent")
    limiter.consume("recent")

    clock.now += 1801
    limiter.consume("new")

    assert limiter.tracked_keys == 2
    assert limiter.consume("recent").allowed is False
