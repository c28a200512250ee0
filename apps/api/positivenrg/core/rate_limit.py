"""
Rate limiting for the booking API.

Two layers share the same Redis instance:
- slowapi `limiter` applies the general API policy to every route.
- `check_rate_limit` is a fixed-window counter for named policies
  (login, chat, booking, ...) that reports remaining quota and reset time.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from slowapi import Limiter
from starlette.requests import Request

from positivenrg.core.cache import CacheClient, cache_keys
from positivenrg.core.config import settings
from positivenrg.core.redis_client import get_redis_url

logger = logging.getLogger(__name__)


# =============================================================================
# Policies
# =============================================================================

@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: int


RATE_LIMIT_POLICIES: dict[str, RateLimitPolicy] = {
    "api": RateLimitPolicy(limit=100, window_seconds=60),
    "chat": RateLimitPolicy(limit=10, window_seconds=60),
    "login": RateLimitPolicy(limit=5, window_seconds=900),
    "register": RateLimitPolicy(limit=3, window_seconds=3600),
    "password_reset": RateLimitPolicy(limit=3, window_seconds=3600),
    "email_verification": RateLimitPolicy(limit=5, window_seconds=3600),
    "booking": RateLimitPolicy(limit=10, window_seconds=300),
    "companion_registration": RateLimitPolicy(limit=1, window_seconds=86400),
}


@dataclass(frozen=True)
class RateLimitConfig:
    limit: int
    window_seconds: int
    identifier: str


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int


# =============================================================================
# Identifier Resolution
# =============================================================================

def get_request_identifier(request: Request, user_id=None) -> str:
    """
    Resolve who a request counts against.

    Precedence: authenticated user > first X-Forwarded-For hop > X-Real-IP >
    socket peer > "unknown". Proxy headers are only read when
    TRUST_PROXY_HEADERS is set.
    """
    if user_id:
        return f"user:{user_id}"

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return f"ip:{first}"

        real_ip = request.headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return f"ip:{real_ip.strip()}"

    if request.client and request.client.host:
        return f"ip:{request.client.host}"

    return "ip:unknown"


# =============================================================================
# Fixed-Window Counter
# =============================================================================

def check_rate_limit(
    cache: CacheClient,
    config: RateLimitConfig,
    scope: str = "api",
    now: float | None = None,
) -> RateLimitResult:
    """
    Count one request against a fixed window and report the outcome.

    A counter of 0 means the store was unavailable; the request is allowed
    with full quota (fail open).
    """
    current = int(now if now is not None else time.time())
    window_start = (current // config.window_seconds) * config.window_seconds
    reset_at = datetime.fromtimestamp(window_start + config.window_seconds, tz=timezone.utc)
    key = cache_keys.rate_limit(scope, config.identifier, window_start)

    count = cache.increment_counter(key, config.window_seconds)
    if count == 0:
        logger.warning(
            "Rate limit store unavailable, allowing request",
            extra={"scope": scope, "identifier": config.identifier},
        )
        return RateLimitResult(
            allowed=True,
            remaining=config.limit,
            reset_at=reset_at,
            limit=config.limit,
        )

    return RateLimitResult(
        allowed=count <= config.limit,
        remaining=max(0, config.limit - count),
        reset_at=reset_at,
        limit=config.limit,
    )


def get_rate_limit_status(
    cache: CacheClient,
    config: RateLimitConfig,
    scope: str = "api",
    now: float | None = None,
) -> RateLimitResult:
    """Report the current window without counting a request."""
    current = int(now if now is not None else time.time())
    window_start = (current // config.window_seconds) * config.window_seconds
    reset_at = datetime.fromtimestamp(window_start + config.window_seconds, tz=timezone.utc)
    count = cache.get_counter(cache_keys.rate_limit(scope, config.identifier, window_start))
    return RateLimitResult(
        allowed=count < config.limit,
        remaining=max(0, config.limit - count),
        reset_at=reset_at,
        limit=config.limit,
    )


# =============================================================================
# slowapi Limiter (general API policy)
# =============================================================================

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
_api_policy = RATE_LIMIT_POLICIES["api"]
DEFAULT_LIMITS = (
    [] if IS_TESTING else [f"{_api_policy.limit}/{_api_policy.window_seconds} seconds"]
)


def _limiter_key(request: Request) -> str:
    return get_request_identifier(request)


def _build_limiter() -> Limiter:
    redis_url = get_redis_url()
    if IS_TESTING or not redis_url:
        return Limiter(key_func=_limiter_key, storage_uri="memory://", default_limits=DEFAULT_LIMITS)

    import redis

    # Try Redis, fall back to memory if connection fails
    try:
        r = redis.from_url(redis_url, socket_connect_timeout=1)
        r.ping()
        return Limiter(key_func=_limiter_key, storage_uri=redis_url, default_limits=DEFAULT_LIMITS)
    except (redis.RedisError, OSError) as e:
        logger.warning(f"Redis unavailable for rate limiting, using in-memory: {e}")
        return Limiter(key_func=_limiter_key, storage_uri="memory://", default_limits=DEFAULT_LIMITS)


limiter = _build_limiter()
