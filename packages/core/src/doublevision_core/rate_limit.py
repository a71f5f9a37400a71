"""In-memory fixed-window rate limiter.

Best-effort abuse mitigation only: counters live in process memory and are
lost on restart. Nothing in the workflow depends on it for correctness.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

SWEEP_INTERVAL_SECONDS = 300


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float  # epoch seconds


@dataclass
class _Window:
    count: int
    reset_time: float


class RateLimiter:
    """Counts hits per identifier within a fixed window.

    The first hit for an identifier (or the first after its window expired)
    opens a new window of ``window_seconds``. Expired windows are swept from
    check() at most once every ``sweep_interval`` seconds.
    """

    def __init__(
        self,
        limit: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + sweep_interval

    def check(self, identifier: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._drop_expired(now)

            window = self._windows.get(identifier)
            if window is None or now > window.reset_time:
                window = _Window(count=1, reset_time=now + self.window_seconds)
                self._windows[identifier] = window
                return RateLimitResult(True, self.limit - 1, window.reset_time)

            if window.count >= self.limit:
                return RateLimitResult(False, 0, window.reset_time)

            window.count += 1
            return RateLimitResult(True, self.limit - window.count, window.reset_time)

    def cleanup(self) -> int:
        """Drop expired windows and return how many were removed."""
        now = self._clock()
        with self._lock:
            return self._drop_expired(now)

    def _drop_expired(self, now: float) -> int:
        expired = [key for key, w in self._windows.items() if now > w.reset_time]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self.sweep_interval
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)
