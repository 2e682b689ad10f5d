"""
Redis-backed sliding window rate limiter.

Counts requests per client IP per minute. Sign-in attempts get their own,
tighter bucket. If Redis is unreachable the limiter fails open.
"""

import time
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/api/health", "/metrics"})
LOGIN_PATH = "/api/auth/login"
LOGIN_LIMIT_PER_MINUTE = 10


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, redis_url: str, limit: int = 60):
        super().__init__(app)
        self._redis_url = redis_url
        self._redis: aioredis.Redis | None = None
        self.limit = limit
        self.window = 60  # seconds

    async def _get_redis(self) -> aioredis.Redis | None:
        if self._redis is None:
            try:
                self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
                await self._redis.ping()
            except Exception as exc:
                logger.warning("Rate limiter: Redis unavailable (%s), passing through", exc)
                self._redis = None
        return self._redis

    def _bucket(self, request: Request) -> tuple[str, int]:
        client_ip = request.client.host if request.client else "unknown"
        if request.url.path == LOGIN_PATH:
            return f"ratelimit:login:{client_ip}", min(self.limit, LOGIN_LIMIT_PER_MINUTE)
        return f"ratelimit:{client_ip}", self.limit

    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        r = await self._get_redis()
        if r is None:
            return await call_next(request)

        key, limit = self._bucket(request)
        now = time.time()

        try:
            pipe = r.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window)
            pipe.zadd(key, {str(now): now})
            pipe.zcard(key)
            pipe.expire(key, self.window)
            results = await pipe.execute()
            request_count = results[2]
        except Exception as exc:
            logger.warning("Rate limiter Redis error: %s", exc)
            return await call_next(request)

        if request_count > limit:
            logger.warning("Rate limit hit on %s (%d/%d)", key, request_count, limit)
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please try again later."},
                headers={"Retry-After": str(self.window)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - request_count))
        return response
