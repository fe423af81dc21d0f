"""
Redis-backed sliding window rate limiter for /api routes.

Counts requests per client IP over the last minute. If Redis can't be
reached the limiter lets traffic through and retries the connection after
a short back-off.
"""

import time
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

import redis.asyncio as aioredis

from app.config import settings

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/api/health"})
RECONNECT_BACKOFF = 30.0  # seconds


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit: int | None = None, window: int = 60):
        super().__init__(app)
        self._redis: aioredis.Redis | None = None
        self._retry_at = 0.0
        self.limit = limit or settings.rate_limit_per_minute
        self.window = window

    async def _get_redis(self) -> aioredis.Redis | None:
        if self._redis is not None:
            return self._redis
        if time.monotonic() < self._retry_at:
            return None
        try:
            client = aioredis.from_url(settings.redis_url, decode_responses=True)
            await client.ping()
            self._redis = client
        except Exception as exc:
            logger.warning("Rate limiter: Redis unavailable (%s), passing through", exc)
            self._retry_at = time.monotonic() + RECONNECT_BACKOFF
        return self._redis

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith("/api/") or path in EXEMPT_PATHS:
            return await call_next(request)

        r = await self._get_redis()
        if r is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        key = f"ratelimit:{client_ip}"

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
            self._redis = None
            return await call_next(request)

        if request_count > self.limit:
            return JSONResponse(
                status_code=429,
                content={"detail": {
                    "code": "RATE_LIMITED",
                    "message": "Too many requests from this IP, please try again later.",
                }},
                headers={"Retry-After": str(self.window)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.limit - request_count))
        return response
