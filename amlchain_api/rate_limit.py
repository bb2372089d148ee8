"""
Rate limiting module for the AMLChain declaration service.

Sliding window rate limiting with per-key tracking. Per-process only.
"""

import time
import threading
from collections import defaultdict, deque
from typing import Dict, Optional
from dataclasses import dataclass


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Sliding window rate limiter.

    Thread-safe implementation using deques for efficient
    sliding window tracking.
    """

    def __init__(self, rpm: int, window_seconds: int = 60, clock=time.time):
        """
        Initialize rate limiter.

        Args:
            rpm: Maximum requests per minute (or per window)
            window_seconds: Window size in seconds (default 60)
            clock: time source returning epoch seconds
        """
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._clock = clock
        self._hits: Dict[str, deque] = defaultdict(deque)
        self._lock = threading.RLock()
        self._next_sweep = clock() + window_seconds

    @property
    def limit(self) -> int:
        return self._limit

    def allow(self, key: str) -> bool:
        """True if a request for ``key`` should be allowed."""
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        """
        Check rate limit and return detailed result.

        Args:
            key: Identifier for rate limiting (client id plus endpoint)

        Returns:
            RateLimitResult with allowed status and metadata
        """
        now = self._clock()
        window_start = now - self._window

        with self._lock:
            # keys come from client headers; drop idle ones once per window
            if now >= self._next_sweep:
                self.cleanup_expired()
            q = self._hits[key]

            while q and q[0] < window_start:
                q.popleft()

            current_count = len(q)
            remaining = max(0, self._limit - current_count)
            reset_at = (q[0] + self._window) if q else (now + self._window)

            if current_count >= self._limit:
                retry_after = q[0] + self._window - now
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(0, retry_after)
                )

            q.append(now)

            return RateLimitResult(
                allowed=True,
                remaining=remaining - 1,
                reset_at=reset_at
            )

    def reset(self, key: Optional[str] = None) -> None:
        """
        Reset rate limit counters.

        Args:
            key: Specific key to reset, or None to reset all
        """
        with self._lock:
            if key:
                self._hits.pop(key, None)
            else:
                self._hits.clear()

    def cleanup_expired(self) -> int:
        """
        Remove expired hits from all keys and forget keys left empty.

        Returns:
            Number of hits removed
        """
        now = self._clock()
        window_start = now - self._window
        removed = 0

        with self._lock:
            empty_keys = []
            for key, q in self._hits.items():
                while q and q[0] < window_start:
                    q.popleft()
                    removed += 1
                if not q:
                    empty_keys.append(key)

            for key in empty_keys:
                del self._hits[key]
            self._next_sweep = now + self._window

        return removed
