"""
Sliding-window rate limiting keyed by client address.

A ``RateLimiter`` instance is used as a FastAPI dependency; when a client has
made ``max_requests`` calls within ``window_seconds`` the request is rejected
with HTTP 429.
"""

import logging
import threading
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, max_requests: int, window_seconds: int, name: str = "default",
                 clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._hits: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def _cleanup(self, key: str, now: float) -> None:
        cutoff = now - self.window_seconds
        hits = [t for t in self._hits.get(key, ()) if t > cutoff]
        if hits:
            self._hits[key] = hits
        else:
            self._hits.pop(key, None)

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._hits):
            self._cleanup(key, now)

    def hit(self, key: str) -> bool:
        """Record a request for ``key``; False when the window is already full."""
        now = self._clock()
        with self._lock:
            self._sweep(now)
            self._cleanup(key, now)
            if len(self._hits.get(key, ())) >= self.max_requests:
                return False
            self._hits[key].append(now)
            return True

    def retry_after(self, key: str) -> int:
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return 0
            return max(1, int(hits[0] + self.window_seconds - self._clock()) + 1)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def __call__(self, request: Request) -> None:
        key = request.client.host if request.client else "unknown"
        if not self.hit(key):
            logger.warning("Rate limit '%s' hit for %s", self.name, key)
            raise HTTPException(
                status_code=429,
                detail="Too many requests, please try again later.",
                headers={"Retry-After": str(self.retry_after(key))},
            )
