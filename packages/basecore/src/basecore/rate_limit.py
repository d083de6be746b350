"""
Redis-backed rate limiter for inbound webhooks.

Fixed window counter per client: the first hit of a window creates
``<prefix>:<client>:<window>`` with INCR and gives it the window as TTL,
later hits only INCR. A client over ``limit`` hits inside one window is
refused until the window rolls over.

Usage:
    limiter = FixedWindowRateLimiter(redis_client, limit=30, window_seconds=60)
    decision = await limiter.hit("203.0.113.7")
    if not decision.allowed:
        ...  # answer 429 with decision.retry_after
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "relay:ratelimit"


class RateLimitExceeded(Exception):
    """Raised when a client used up its window."""

    def __init__(self, client_id: str, decision: "RateLimitDecision"):
        super().__init__(f"Rate limit exceeded for {client_id}")
        self.client_id = client_id
        self.decision = decision


@dataclass
class RateLimitDecision:
    """
    Outcome of one hit.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Requests allowed per window.
        remaining: Requests left in the current window.
        retry_after: Seconds until the window resets.
    """

    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class FixedWindowRateLimiter:
    """Counts hits per client in fixed windows. A limit of 0 disables it."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        limit: int = 30,
        window_seconds: int = 60,
        prefix: str = RATE_LIMIT_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis_client
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.limit > 0

    def window_key(self, client_id: str, window: int) -> str:
        return f"{self.prefix}:{client_id}:{window}"

    async def hit(self, client_id: str) -> RateLimitDecision:
        """
        Count one request from ``client_id``.

        Redis errors let the request through; intake should not stop
        because the counter is unavailable.
        """
        now = self._clock()
        window = int(now // self.window_seconds)
        retry_after = max(1, int((window + 1) * self.window_seconds - now))
        if not self.enabled:
            return RateLimitDecision(True, self.limit, self.limit, retry_after)

        key = self.window_key(client_id, window)
        try:
            count = await self.redis.incr(key)
            if count == 1:
                await self.redis.expire(key, self.window_seconds)
        except RedisError as e:
            logger.warning(f"Rate limiter unavailable, allowing request from {client_id}: {e}")
            return RateLimitDecision(True, self.limit, self.limit, retry_after)

        return RateLimitDecision(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(self.limit - count, 0),
            retry_after=retry_after,
        )

    async def check(self, client_id: str) -> RateLimitDecision:
        """Like hit(), but raises RateLimitExceeded when refused."""
        decision = await self.hit(client_id)
        if not decision.allowed:
            raise RateLimitExceeded(client_id, decision)
        return decision
