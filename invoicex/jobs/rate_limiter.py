"""
Rate Limiter

Token bucket limiting how many jobs the worker starts per time window,
e.g. at most 10 jobs every 1000 ms.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Rate limit configuration"""
    max_jobs: int = 10
    duration_ms: int = 1000

    @property
    def refill_rate(self) -> float:
        """Tokens added per second"""
        return self.max_jobs / (self.duration_ms / 1000)


class RateLimiter:
    """
    Token bucket rate limiter.

    The bucket holds at most ``max_jobs`` tokens and refills continuously
    at ``max_jobs`` per ``duration_ms``.

    Usage:
        limiter = RateLimiter(RateLimitConfig(max_jobs=10, duration_ms=1000))

        # Wait for a slot
        await limiter.acquire()
    """

    def __init__(self, config: Optional[RateLimitConfig] = None):
        self.config = config or RateLimitConfig()
        if self.config.max_jobs < 1 or self.config.duration_ms <= 0:
            raise ValueError("Rate limit needs max_jobs >= 1 and a positive duration")

        self._tokens = float(self.config.max_jobs)
        self._last_update = time.monotonic()
        self._lock = asyncio.Lock()
        self._acquired = 0

    async def acquire(self) -> None:
        """
        Acquire permission to start a job.

        Blocks until a token is available. Waiters are served in order.
        """
        async with self._lock:
            self._refill_tokens()
            while self._tokens < 1:
                wait_time = (1 - self._tokens) / self.config.refill_rate
                logger.debug(f"Rate limited, waiting {wait_time:.3f}s")
                await asyncio.sleep(wait_time)
                self._refill_tokens()

            self._tokens -= 1
            self._acquired += 1

    def _refill_tokens(self) -> None:
        """Refill token bucket based on elapsed time"""
        now = time.monotonic()
        elapsed = now - self._last_update
        self._last_update = now
        self._tokens = min(
            float(self.config.max_jobs),
            self._tokens + elapsed * self.config.refill_rate
        )

    @property
    def available(self) -> float:
        """Tokens currently available"""
        self._refill_tokens()
        return self._tokens

    def get_stats(self) -> Dict[str, Any]:
        return {
            'acquired': self._acquired,
            'available': round(self.available, 2),
            'limits': {
                'max_jobs': self.config.max_jobs,
                'duration_ms': self.config.duration_ms
            }
        }
