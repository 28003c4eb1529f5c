"""
Fixed-window rate limiting for the passkey mapping registry.

Counts live in process memory, keyed by client identifier. A window opens on
a client's first request and admits ``limit`` requests until it closes.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Request

from ..config import settings


class RateLimitExceeded(Exception):
    """Rate limit has been exceeded."""
    def __init__(self, limit: int, window_seconds: int, retry_after: int):
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded: {limit} requests per {window_seconds}s")


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """In-memory fixed window limiter."""

    def __init__(
        self,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10_000,
    ):
        self.limit = limit or settings.passkey_mapping_rate_limit
        self.window_seconds = window_seconds or settings.passkey_mapping_rate_window_seconds
        self._clock = clock
        self._max_keys = max_keys
        self._windows: Dict[str, _Window] = {}

    def check(self, key: str) -> None:
        """Count a request for ``key``. Raises RateLimitExceeded when over the limit."""
        now = self._clock()
        window = self._windows.get(key)

        if window is None or now >= window.reset_at:
            if window is None and len(self._windows) >= self._max_keys:
                self._purge(now)
            self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
            return

        if window.count >= self.limit:
            retry_after = max(1, math.ceil(window.reset_at - now))
            raise RateLimitExceeded(self.limit, self.window_seconds, retry_after)

        window.count += 1

    def reset(self) -> None:
        self._windows.clear()

    def _purge(self, now: float) -> None:
        self._windows = {k: w for k, w in self._windows.items() if w.reset_at > now}


def client_identifier(request: Request) -> str:
    """First X-Forwarded-For hop, or the socket peer when forwarding isn't trusted."""
    if settings.trust_forwarded_for:
        forwarded_for = request.headers.get("x-forwarded-for")
        if not forwarded_for:
            return "unknown"
        return forwarded_for.split(",")[0].strip() or "unknown"
    return request.client.host if request.client else "unknown"


# Singleton instance
_rate_limiter: Optional[FixedWindowRateLimiter] = None


def get_rate_limiter() -> FixedWindowRateLimiter:
    """Get the singleton rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = FixedWindowRateLimiter()
    return _rate_limiter
