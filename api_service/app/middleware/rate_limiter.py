"""
Redis-backed sliding window rate limiter (application level).

Per-IP limits apply to every request, per-user limits to requests carrying a
valid access token. Shelf mutations are cheap but clients fire one per drag
or tap, so limits are generous; the point is to stop runaway retry loops.

Uses Redis sorted sets for precise sliding window counting and fails open
when Redis is unreachable.
"""

from __future__ import annotations

import time
import uuid

import redis.asyncio as redis
import structlog
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response

from app.auth.jwt_handler import verify_token
from app.config import get_settings

logger = structlog.get_logger()

EXEMPT_PATHS = frozenset({"/health", "/live", "/ready", "/metrics"})


class RateLimiterMiddleware(BaseHTTPMiddleware):
    def __init__(self, app):
        super().__init__(app)
        settings = get_settings()
        self.enabled = settings.rate_limit_enabled
        self.redis_client: redis.Redis | None = None
        self.per_user_limit = settings.rate_limit_per_user
        self.per_ip_limit = settings.rate_limit_per_ip
        self.window_seconds = settings.rate_limit_window_seconds
        self._redis_url = settings.redis_dsn

    async def _get_redis(self) -> redis.Redis:
        if self.redis_client is None:
            self.redis_client = redis.from_url(self._redis_url, decode_responses=True)
        return self.redis_client

    async def _check_rate_limit(self, key: str, limit: int) -> tuple[bool, int]:
        """Returns (allowed, remaining) for one hit against `key`."""
        try:
            r = await self._get_redis()
            now = time.time()
            pipe = r.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window_seconds)
            pipe.zcard(key)
            # unique member so simultaneous hits are all counted
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            pipe.expire(key, self.window_seconds + 1)
            results = await pipe.execute()
            current_count = results[1]
        except redis.RedisError:
            logger.warning("rate_limiter_redis_error", key=key)
            return True, limit

        if current_count >= limit:
            return False, 0
        return True, max(limit - current_count - 1, 0)

    def _too_many(self, detail: str) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": detail, "retry_after": self.window_seconds},
            headers={"Retry-After": str(self.window_seconds)},
        )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.enabled or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_ip = request.headers.get("X-Real-IP", request.client.host if request.client else "unknown")
        ip_allowed, ip_remaining = await self._check_rate_limit(
            f"ratelimit:ip:{client_ip}", self.per_ip_limit
        )
        if not ip_allowed:
            logger.info("rate_limited", scope="ip", client_ip=client_ip)
            return self._too_many("Too many requests from this IP")

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            payload = verify_token(auth_header.split(" ", 1)[1])
            if payload and payload.get("type") == "access":
                user_id = payload["sub"]
                user_allowed, _ = await self._check_rate_limit(
                    f"ratelimit:user:{user_id}", self.per_user_limit
                )
                if not user_allowed:
                    logger.info("rate_limited", scope="user", user_id=user_id)
                    return self._too_many("Too many requests, slow down and try again")

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining-IP"] = str(ip_remaining)
        return response
