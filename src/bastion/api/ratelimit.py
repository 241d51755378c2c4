"""Sliding-window rate limiter for the public defence endpoint."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most *max_requests* per key within any *window_seconds* span.

    Rejected requests are not counted, so a client hammering the endpoint is
    let back in as soon as its oldest accepted request leaves the window.
    """

    def __init__(
        self,
        max_requests: int = 3,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    def hit(self, key: str) -> bool:
        """Record a request for *key*. Returns False if it must be rejected."""
        now = self._clock()
        recent = self._hits.setdefault(key, deque())
        while recent and now - recent[0] >= self.window_seconds:
            recent.popleft()
        if len(recent) >= self.max_requests:
            logger.warning("rate_limit_hit key=%s count=%d", key, len(recent))
            return False
        recent.append(now)
        return True

    def reset(self) -> None:
        self._hits.clear()
