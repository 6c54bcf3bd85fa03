# Rate limiting
# middleware/rate_limit.py
"""Per-user rate limiting using Redis with an in-memory fallback"""

from fastapi import Request, HTTPException, status, Depends
from typing import Optional, Dict, Any
import time
import uuid
import structlog
from collections import defaultdict
import redis.asyncio as redis

from middleware.auth import get_current_user
from utils.config import settings


logger = structlog.get_logger()


class RateLimiter:
    """
    Sliding-window limiter backed by a Redis sorted set.
    Falls back to an in-memory token bucket when Redis is unavailable.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        requests_per_window: Optional[int] = None,
        window_seconds: Optional[int] = None
    ):
        self.redis_url = redis_url if redis_url is not None else settings.redis_url
        self.requests_per_window = requests_per_window or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds
        self.redis_client = None
        self.is_redis_available = False
        self.logger = logger.bind(service="RateLimiter")

        self.memory_buckets = defaultdict(lambda: {
            "tokens": float(self.requests_per_window),
            "last_update": time.time()
        })

    async def initialize(self):
        if not self.redis_url:
            self.logger.info("No Redis URL configured, using in-memory rate limiting")
            return

        try:
            self.redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            await self.redis_client.ping()
            self.is_redis_available = True
            self.logger.info("Redis rate limiter initialized")

        except Exception as e:
            self.logger.warning("Redis connection failed, using in-memory rate limiting",
                                error=str(e))
            self.is_redis_available = False

    async def close(self):
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            self.is_redis_available = False

    async def check_rate_limit(self, identifier: str) -> Dict[str, Any]:
        """Consume one request for ``identifier`` and report the window state"""

        if self.is_redis_available and self.redis_client:
            return await self._check_redis_limit(identifier)
        return self._check_memory_limit(identifier)

    async def _check_redis_limit(self, identifier: str) -> Dict[str, Any]:
        key = f"rate_limit:{identifier}"
        now = time.time()
        window_start = now - self.window_seconds

        try:
            await self.redis_client.zremrangebyscore(key, 0, window_start)
            request_count = await self.redis_client.zcard(key)

            if request_count >= self.requests_per_window:
                oldest = await self.redis_client.zrange(key, 0, 0, withscores=True)
                if oldest:
                    reset_time = int(oldest[0][1]) + self.window_seconds
                else:
                    reset_time = int(now) + self.window_seconds

                return {
                    "allowed": False,
                    "limit": self.requests_per_window,
                    "remaining": 0,
                    "reset": reset_time
                }

            # Unique member so concurrent requests in the same second all count
            await self.redis_client.zadd(key, {f"{now}:{uuid.uuid4().hex}": now})
            await self.redis_client.expire(key, self.window_seconds)

            return {
                "allowed": True,
                "limit": self.requests_per_window,
                "remaining": self.requests_per_window - request_count - 1,
                "reset": int(now) + self.window_seconds
            }

        except Exception as e:
            self.logger.warning("Redis rate limit check failed", error=str(e))
            return self._check_memory_limit(identifier)

    def _check_memory_limit(self, identifier: str) -> Dict[str, Any]:
        bucket = self.memory_buckets[identifier]
        current_time = time.time()

        # Refill tokens based on time passed
        time_passed = max(0.0, current_time - bucket["last_update"])
        tokens_to_add = (time_passed / self.window_seconds) * self.requests_per_window

        bucket["tokens"] = min(self.requests_per_window, bucket["tokens"] + tokens_to_add)
        bucket["last_update"] = current_time

        if bucket["tokens"] < 1:
            return {
                "allowed": False,
                "limit": self.requests_per_window,
                "remaining": 0,
                "reset": int(current_time + self.window_seconds)
            }

        bucket["tokens"] -= 1

        return {
            "allowed": True,
            "limit": self.requests_per_window,
            "remaining": int(bucket["tokens"]),
            "reset": int(current_time + self.window_seconds)
        }


async def rate_limit_check(
    request: Request,
    current_user: Dict[str, Any] = Depends(get_current_user)
) -> Dict[str, Any]:
    """
    Route dependency enforcing the per-user limit.
    Runs after authentication and before the gateway core.
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return current_user

    identifier = f"user:{current_user['id']}"
    limit_info = await limiter.check_rate_limit(identifier)

    if not limit_info["allowed"]:
        logger.warning("Rate limit exceeded", identifier=identifier)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please wait and try again.",
            headers={
                "X-RateLimit-Limit": str(limit_info["limit"]),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(limit_info["reset"]),
                "Retry-After": str(max(0, limit_info["reset"] - int(time.time())))
            }
        )

    return current_user
