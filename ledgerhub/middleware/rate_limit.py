"""
Rate Limiting Middleware

Per-tenant token bucket in Redis. Limits come from the tenant's settings
(rate_limit_per_minute, rate_limit_burst) or the RATE_LIMIT_* defaults.

TRADEOFF: When Redis is unavailable requests are allowed through. Session
checks still fail closed, so this only loosens throttling.
"""
import logging
import time
from typing import Tuple

import redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ledgerhub.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class RateLimitMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, redis_client=None):
        super().__init__(app)

        self.redis_client = redis_client
        self.redis_available = False
        try:
            if self.redis_client is None:
                self.redis_client = redis.from_url(
                    settings.REDIS_URL,
                    decode_responses=True,
                    socket_connect_timeout=5
                )
            self.redis_client.ping()
            self.redis_available = True
            logger.info("Redis connection established for rate limiting")
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.error(f"Redis connection failed, rate limiting disabled: {e}")

        self.excluded_paths = [
            "/docs",
            "/redoc",
            "/openapi.json",
            "/health",
        ]

    async def dispatch(self, request: Request, call_next):
        if any(request.url.path.startswith(path) for path in self.excluded_paths):
            return await call_next(request)

        if not self.redis_available:
            return await call_next(request)

        tenant = getattr(request.state, "tenant", None)
        if not tenant:
            return await call_next(request)

        allowed, retry_after = self._check_rate_limit(tenant)

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for tenant {tenant.subdomain}",
                extra={"tenant_id": tenant.id}
            )
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded",
                    "retry_after": retry_after
                },
                headers={"Retry-After": str(retry_after)}
            )

        return await call_next(request)

    def _check_rate_limit(self, tenant) -> Tuple[bool, int]:
        """
        Token bucket: `burst` tokens, refilled at rate_limit per minute,
        one token per request. Returns (allowed, retry_after_seconds).
        """
        rate_limit, burst = tenant.rate_limits(settings.RATE_LIMIT_PER_MINUTE, settings.RATE_LIMIT_BURST)
        if rate_limit <= 0 or burst <= 0:
            # Tenant API access switched off
            return False, 60

        key = f"rate_limit:{tenant.id}"
        key_timestamp = f"{key}:timestamp"

        try:
            current_tokens = self.redis_client.get(key)
            last_update = self.redis_client.get(key_timestamp)

            now = time.time()

            if current_tokens is None:
                self.redis_client.setex(key, 60, burst - 1)
                self.redis_client.setex(key_timestamp, 60, now)
                return True, 0

            current_tokens = float(current_tokens)
            last_update = float(last_update) if last_update else now

            elapsed = now - last_update
            new_tokens = min(burst, current_tokens + elapsed * (rate_limit / 60.0))

            if new_tokens >= 1:
                self.redis_client.setex(key, 60, new_tokens - 1)
                self.redis_client.setex(key_timestamp, 60, now)
                return True, 0

            retry_after = int(((1 - new_tokens) / (rate_limit / 60.0)) + 1)
            return False, retry_after

        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return True, 0
