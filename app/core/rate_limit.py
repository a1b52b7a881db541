from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable


@dataclass
class RateLimitResult:
    allowed: bool
    count: int
    reset_at: datetime


@dataclass
class _Window:
    count: int
    reset_at: datetime


class RateLimiter:
    """Process-local fixed-window counter keyed by requester.

    A window opens on the first request and lasts ``window_seconds``; the first
    request after it lapses opens a fresh one. Denied requests do not count.
    State is lost on restart.
    """

    def __init__(self, limit: int, window_seconds: int, clock: Callable[[], datetime] | None = None) -> None:
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._windows: dict[str, _Window] = {}

    def check(self, key: str) -> RateLimitResult:
        now = self.clock()
        window = self._windows.get(key)
        if window is None or now >= window.reset_at:
            window = _Window(count=1, reset_at=now + self.window)
            self._windows[key] = window
            return RateLimitResult(allowed=True, count=1, reset_at=window.reset_at)
        if window.count >= self.limit:
            return RateLimitResult(allowed=False, count=window.count, reset_at=window.reset_at)
        window.count += 1
        return RateLimitResult(allowed=True, count=window.count, reset_at=window.reset_at)
