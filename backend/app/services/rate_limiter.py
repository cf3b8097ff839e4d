"""
services/rate_limiter.py — In-process fixed-window admission control.

Used by the login flow: at most `max_attempts` attempts per key (client IP)
in each window of `window_seconds`. The window starts with the first attempt
and resets wholesale once it has elapsed.

State lives in a dict guarded by a threading.Lock; Flask serves requests on
worker threads and every check-and-increment happens under the lock.
Counters are per process; running several workers multiplies the budget.
Elapsed windows are swept at most once per window period, so the map only
holds keys seen within roughly the last two windows.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int   # seconds until the window resets; 0 when allowed


@dataclass
class _Window:
    started_at: float
    count: int = 0


class FixedWindowRateLimiter:

    def __init__(
            self,
            max_attempts: int = 10,
            window_seconds: int = 3600,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def consume(self, key: str) -> RateLimitDecision:
        """Counts one attempt for `key` and reports whether it is admitted."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            window = self._windows.get(key)
            if window is None or now - window.started_at >= self.window_seconds:
                window = _Window(started_at=now)
                self._windows[key] = window

            if window.count >= self.max_attempts:
                retry_after = math.ceil(window.started_at + self.window_seconds - now)
                logger.warning("Rate limit exceeded for %s; retry in %ss.", key, retry_after)
                return RateLimitDecision(allowed=False, remaining=0, retry_after=max(retry_after, 1))

            window.count += 1
            return RateLimitDecision(
                allowed=True,
                remaining=self.max_attempts - window.count,
                retry_after=0,
            )

    def _sweep(self, now: float) -> None:
        """Drops every elapsed window. Caller holds the lock."""
        expired = [k for k, w in self._windows.items() if now - w.started_at >= self.window_seconds]
        for k in expired:
            del self._windows[k]
        self._last_sweep = now
        if expired:
            logger.debug("Rate limiter dropped %d expired window(s).", len(expired))

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._windows)

    def reset(self, key: str | None = None) -> None:
        """Forgets one key, or every key when `key` is None."""
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)
