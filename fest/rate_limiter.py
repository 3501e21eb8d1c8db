"""Per-operator throttling for the scan endpoint."""

from __future__ import annotations

import asyncio
import os
import time
from collections import deque
from typing import Deque, Dict, Optional


class RateLimiter:
    """Sliding-window limiter keyed by caller.

    Keys whose newest hit has left the window are dropped on a sweep that runs
    at most once per window, so idle operators do not accumulate.
    """

    def __init__(self, *, limit: int, window_seconds: float) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window = window_seconds
        self._lock = asyncio.Lock()
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = time.monotonic()

    def __len__(self) -> int:
        return len(self._hits)

    def _sweep(self, now: float) -> None:
        cutoff = now - self.window
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
        self._last_sweep = now

    async def try_acquire(self, key: str, *, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        cutoff = now - self.window

        async with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(now)

            hits = self._hits.get(key)
            if hits is None:
                hits = self._hits[key] = deque()
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True

    async def reset(self, key: Optional[str] = None) -> None:
        async with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)


_scan_limiter: Optional[RateLimiter] = None


def get_scan_rate_limiter() -> Optional[RateLimiter]:
    """Shared limiter for round scans; None unless SCAN_RATE_LIMIT is positive."""

    global _scan_limiter
    if _scan_limiter is None:
        try:
            limit = int(os.getenv("SCAN_RATE_LIMIT", "0"))
            window = float(os.getenv("SCAN_RATE_WINDOW", "60"))
        except ValueError:
            return None
        if limit > 0:
            _scan_limiter = RateLimiter(limit=limit, window_seconds=window)
    return _scan_limiter


__all__ = ["RateLimiter", "get_scan_rate_limiter"]
