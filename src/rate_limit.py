"""
    Fixed-window rate limiting for the chat endpoints, keyed by client address
    NOTE: The limiter is injected into the API (app.state), it is not a module-level global
    NOTE: One lock guards the whole table. Every read-modify-write of an entry happens under it
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from src.config import RATE_LIMIT_BLOCK_SECONDS, RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0


class RateLimiter(Protocol):
    def check_and_increment(self, key: str) -> RateLimitDecision: ...


@dataclass
class _Entry:
    count: int
    window_start: float
    blocked_until: float = 0.0


class InMemoryRateLimiter:
    """
        Allows max_requests per key in each fixed window. Going over blocks the key for block_seconds
        Expired entries are swept lazily every sweep_interval seconds. An entry whose window is still
        running, or that is still blocked, is never swept
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        block_seconds: float = RATE_LIMIT_BLOCK_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float | None = None,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.block_seconds = block_seconds
        self.sweep_interval = sweep_interval if sweep_interval is not None else window_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def check_and_increment(self, key: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep(now)

            entry = self._entries.get(key)
            if entry is not None and entry.blocked_until > now:
                return RateLimitDecision(allowed=False, remaining=0, retry_after=entry.blocked_until - now)

            block_over = entry is not None and 0 < entry.blocked_until <= now
            if entry is None or block_over or now - entry.window_start >= self.window_seconds:
                entry = _Entry(count=0, window_start=now)
                self._entries[key] = entry

            entry.count += 1
            if entry.count > self.max_requests:
                entry.blocked_until = now + self.block_seconds
                return RateLimitDecision(allowed=False, remaining=0, retry_after=self.block_seconds)

            return RateLimitDecision(allowed=True, remaining=self.max_requests - entry.count)

    def sweep(self) -> int:
        """Drop expired entries now. Returns how many were removed."""
        with self._lock:
            return self._sweep(self._clock())

    def _sweep(self, now: float) -> int:
        expired = [
            key for key, entry in self._entries.items()
            if now - entry.window_start >= self.window_seconds and entry.blocked_until <= now
        ]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now
        return len(expired)
