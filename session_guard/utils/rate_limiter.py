"""In-process sliding window rate limiter."""
from __future__ import annotations

import math
import time
from collections import deque
from typing import Callable


class RateLimiter:
    """Counts hits per key over a sliding window.

    State lives in this process only, so each worker enforces its own limit.
    """

    def __init__(self, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._hits: dict[str, deque[float]] = {}

    async def check(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int | None]:
        """Record a hit for ``key`` if it is under ``limit``.

        Returns:
            (allowed, retry_after) where retry_after is whole seconds until the
            oldest hit leaves the window, or None when allowed
        """
        # No awaits below, so concurrent callers cannot interleave
        now = self._timer()
        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= now - window_seconds:
            hits.popleft()

        if len(hits) >= limit:
            retry_after = max(1, math.ceil(hits[0] + window_seconds - now))
            return False, retry_after

        hits.append(now)
        self._prune(now, window_seconds)
        return True, None

    def _prune(self, now: float, window_seconds: int) -> None:
        # Drop idle keys so one-off clients do not accumulate
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - window_seconds]
        for key in stale:
            del self._hits[key]
