"""Fixed-window admission control keyed by (subject, resource).

Counters are process-local. A burst straddling a window boundary can admit up to
roughly twice ``max_requests`` across the two windows.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from handscore.settings import settings


@dataclass
class RateLimitWindow:
    key: tuple[str, str]
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[tuple[str, str], RateLimitWindow] = {}
        self._lock = threading.Lock()
        self._next_purge_at = clock() + window_seconds

    def _purge_expired(self, now: float) -> None:
        # Caller holds the lock; runs at most once per window length.
        if now < self._next_purge_at:
            return
        for key in [key for key, window in self._windows.items() if now > window.reset_at]:
            del self._windows[key]
        self._next_purge_at = now + self.window_seconds

    def check(self, subject_id: str, resource: str) -> bool:
        """Count one request and return whether it is admitted."""
        key = (subject_id, resource)
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                self._windows[key] = RateLimitWindow(key=key, count=1, reset_at=now + self.window_seconds)
                return True
            if window.count >= self.max_requests:
                return False
            window.count += 1
            return True

    def retry_after(self, subject_id: str, resource: str) -> float:
        """Seconds until the current window for the key expires (0 when none is active)."""
        now = self._clock()
        with self._lock:
            window = self._windows.get((subject_id, resource))
            if window is None or now > window.reset_at:
                return 0.0
            return window.reset_at - now

    def window(self, subject_id: str, resource: str) -> RateLimitWindow | None:
        with self._lock:
            window = self._windows.get((subject_id, resource))
            if window is None:
                return None
            return RateLimitWindow(key=window.key, count=window.count, reset_at=window.reset_at)

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._windows)


_limiter: FixedWindowRateLimiter | None = None


def get_rate_limiter() -> FixedWindowRateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = FixedWindowRateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _limiter


def reset_rate_limiter() -> None:
    global _limiter
    _limiter = None
