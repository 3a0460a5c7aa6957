"""
Redis-based rate limiter service.

Implements a sliding window log using a Redis sorted set per bucket.
One MULTI trims members older than the window, adds this request and
counts, so concurrent requests never both see a free slot. A denied
request removes its own member again.

Rate limiting is best-effort. Without Redis, or when Redis errors, every
request is allowed.
"""

import hashlib
import logging
import math
import secrets
import time
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from fastapi import HTTPException, Request, WebSocket

from constants import RATE_LIMITS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """
    Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed.
        remaining: Requests left in the current window.
        reset_at: Epoch milliseconds when a slot frees up.
    """
    allowed: bool
    remaining: int
    reset_at: int

    @property
    def retry_after(self) -> int:
        """Whole seconds until reset_at, at least 1."""
        return max(1, math.ceil((self.reset_at - time.time() * 1000) / 1000))


def _allow(limit: int, window_seconds: int) -> RateLimitResult:
    return RateLimitResult(
        allowed=True,
        remaining=max(0, limit - 1),
        reset_at=int(time.time() * 1000) + window_seconds * 1000,
    )


class RateLimiter:
    """Sliding window rate limiter using Redis sorted sets."""

    KEY_PREFIX = "ratelimit:"

    def __init__(self, redis_client: Optional[redis.Redis], enabled: bool = True):
        """
        Initialize rate limiter with Redis client.

        Args:
            redis_client: Async Redis client, or None to allow everything.
            enabled: Whether rate limiting is enabled.
        """
        self.redis = redis_client
        self.enabled = enabled

    async def check_rate_limit(
        self,
        key: str,
        limit: int,
        window_seconds: int,
    ) -> RateLimitResult:
        """
        Check a bucket and record this request if it is allowed.

        Args:
            key: Bucket identifier (e.g. "claim:ip:<hash>").
            limit: Maximum requests allowed in the window.
            window_seconds: Window length in seconds.
        """
        if not self.enabled or self.redis is None:
            return _allow(limit, window_seconds)

        redis_key = f"{self.KEY_PREFIX}{key}"
        now_ms = int(time.time() * 1000)
        window_start = now_ms - window_seconds * 1000

        member = f"{now_ms}-{secrets.token_hex(4)}"
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(redis_key, 0, window_start)
                pipe.zadd(redis_key, {member: now_ms})
                pipe.zcard(redis_key)
                pipe.zrange(redis_key, 0, 0, withscores=True)
                pipe.expire(redis_key, window_seconds)
                results = await pipe.execute()
        except redis.RedisError as e:
            # If Redis is unavailable, fail open (allow request)
            logger.error(f"Rate limiter Redis error: {e}")
            return _allow(limit, window_seconds)

        current_count = results[2]
        if current_count > limit:
            oldest = results[3]
            if oldest:
                reset_at = int(oldest[0][1]) + window_seconds * 1000
            else:
                reset_at = now_ms + window_seconds * 1000
            try:
                await self.redis.zrem(redis_key, member)
            except redis.RedisError as e:
                logger.warning(f"Could not drop denied request from {key}: {e}")
            logger.warning(f"Rate limit exceeded for {key}: {current_count - 1}/{limit}")
            return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)

        return RateLimitResult(
            allowed=True,
            remaining=limit - current_count,
            reset_at=now_ms + window_seconds * 1000,
        )

    async def check_bucket(self, bucket: str, client_key: str) -> RateLimitResult:
        """Check one of the named limits in RATE_LIMITS for a client."""
        limit, window = RATE_LIMITS[bucket]
        return await self.check_rate_limit(f"{bucket}:{client_key}", limit, window)

    def get_client_key(self, request: Request | WebSocket) -> str:
        """
        Generate rate limit key for client.

        Hashes the client IP so raw addresses never land in Redis keys.
        """
        client_ip = get_client_ip(request)
        ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:16]
        return f"ip:{ip_hash}"


def get_client_ip(request: Request | WebSocket) -> str:
    """
    Extract client IP from request, handling proxies.

    Args:
        request: HTTP request or WebSocket.

    Returns:
        Client IP address string.
    """
    # Check X-Forwarded-For header (from reverse proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP (original client)
        return forwarded.split(",")[0].strip()

    # Check X-Real-IP header (nginx)
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


class ConnectionMessageLimiter:
    """
    In-memory rate limiter for WebSocket message frequency.

    Used to limit messages within a single connection without
    requiring Redis round-trips for every message.
    """

    def __init__(self, max_messages: int = 30, window_seconds: int = 10):
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self.timestamps: list[float] = []

    def check(self) -> bool:
        """
        Check if another message is allowed.

        Returns:
            True if message is allowed, False if rate limited.
        """
        now = time.time()
        cutoff = now - self.window_seconds

        self.timestamps = [t for t in self.timestamps if t > cutoff]

        if len(self.timestamps) >= self.max_messages:
            return False

        self.timestamps.append(now)
        return True


# Global rate limiter instance
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter (a disabled one until main.py sets it)."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(None, enabled=False)
    return _rate_limiter


def set_rate_limiter(limiter: Optional[RateLimiter]) -> None:
    global _rate_limiter
    _rate_limiter = limiter


async def enforce_rate_limit(request: Request, bucket: str) -> RateLimitResult:
    """
    Check a named bucket for the requesting client.

    Raises:
        HTTPException: 429 with Retry-After when the bucket is full.
    """
    limiter = get_rate_limiter()
    result = await limiter.check_bucket(bucket, limiter.get_client_key(request))
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(result.retry_after)},
        )
    return result
