"""Per-user fixed-window rate limiting for client-originated requests.

Counters live in process memory, so each API instance enforces its own
window. Behind a load balancer the effective limit is ``limit * instances``.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .config import get_settings
from .errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    started_at: float
    count: int


class FixedWindowRateLimiter:
    """Allow ``limit`` events per ``window_seconds`` for each key."""

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def check(self, key: str) -> None:
        """Record one event for ``key``; raise RateLimited when over the limit."""
        now = self._clock()
        window = self._windows.get(key)

        if window is None or now - window.started_at >= self.window_seconds:
            self._windows[key] = _Window(started_at=now, count=1)
            self._prune(now)
            return

        if window.count >= self.limit:
            retry_after = int(self.window_seconds - (now - window.started_at)) + 1
            logger.warning(f"Rate limit exceeded for {key} ({window.count}/{self.limit})")
            raise RateLimited(
                "Too many notifications. Please try again later.",
                details=[{"field": None, "message": f"retry after {retry_after}s", "code": "retry_after"}],
            )

        window.count += 1

    def reset(self) -> None:
        self._windows.clear()

    def _prune(self, now: float) -> None:
        # Keep the map bounded by dropping windows that have already expired
        expired = [
            key for key, window in self._windows.items()
            if now - window.started_at >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]


_notification_limiter: FixedWindowRateLimiter | None = None


def get_notification_rate_limiter() -> FixedWindowRateLimiter:
    """Process-wide limiter for the createNotification endpoint."""
    global _notification_limiter

    if _notification_limiter is None:
        settings = get_settings()
        _notification_limiter = FixedWindowRateLimiter(
            limit=settings.notification_rate_limit,
            window_seconds=settings.notification_rate_window_seconds,
        )
    return _notification_limiter
