"""
Redis-backed cache and counters.

Every operation degrades to a safe default (miss, no-op, zero) when Redis is
not configured or unreachable, so a cache outage never fails a request.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from redis.exceptions import RedisError

from positivenrg.core.config import settings

logger = logging.getLogger(__name__)

CACHE_ERRORS = (RedisError, OSError, ValueError, TypeError)


class CacheClient:
    """JSON cache over an injected Redis client (None disables caching)."""

    def __init__(self, redis_client=None):
        self.redis_client = redis_client

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    def get(self, key: str) -> Any | None:
        if self.redis_client is None:
            return None
        try:
            raw = self.redis_client.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except CACHE_ERRORS as exc:
            logger.warning("Cache get failed for %s: %s", key, exc)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int = 3600) -> bool:
        if self.redis_client is None:
            return False
        try:
            self.redis_client.setex(key, ttl_seconds, json.dumps(value, default=str))
            return True
        except CACHE_ERRORS as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)
            return False

    def delete(self, key: str) -> bool:
        if self.redis_client is None:
            return False
        try:
            self.redis_client.delete(key)
            return True
        except CACHE_ERRORS as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob pattern. Uses SCAN, not KEYS."""
        if self.redis_client is None:
            return 0
        try:
            keys = list(self.redis_client.scan_iter(match=pattern))
            if not keys:
                return 0
            self.redis_client.delete(*keys)
            return len(keys)
        except CACHE_ERRORS as exc:
            logger.warning("Cache pattern delete failed for %s: %s", pattern, exc)
            return 0

    def increment_counter(self, key: str, ttl_seconds: int | None = None) -> int:
        """
        Atomically increment a counter.

        INCR and EXPIRE NX run in one MULTI block, so the TTL is attached
        once and the window does not slide. Returns 0 when the store is
        unavailable.
        """
        if self.redis_client is None:
            return 0
        try:
            with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                if ttl_seconds:
                    pipe.expire(key, ttl_seconds, nx=True)
                results = pipe.execute()
            return int(results[0])
        except CACHE_ERRORS as exc:
            logger.warning("Counter increment failed for %s: %s", key, exc)
            return 0

    def get_counter(self, key: str) -> int:
        if self.redis_client is None:
            return 0
        try:
            raw = self.redis_client.get(key)
            return int(raw) if raw is not None else 0
        except CACHE_ERRORS as exc:
            logger.warning("Counter read failed for %s: %s", key, exc)
            return 0


def filter_hash(filters: dict[str, Any] | None) -> str:
    """Stable short hash of a filter dict for list-cache keys."""
    payload = json.dumps(filters or {}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


class CacheKeys:
    """Key builders following the `<entity>:<id>` convention."""

    @staticmethod
    def companion(companion_id) -> str:
        return f"human_companion:{companion_id}"

    @staticmethod
    def companion_list(filters: dict[str, Any] | None = None) -> str:
        return f"companions:list:{filter_hash(filters)}"

    @staticmethod
    def appointment(appointment_id) -> str:
        return f"appointment:{appointment_id}"

    @staticmethod
    def availability(companion_id, start, end) -> str:
        window = filter_hash({"start": start.isoformat(), "end": end.isoformat()})
        return f"availability:{companion_id}:{window}"

    @staticmethod
    def rate_limit(scope: str, identifier: str, window_start: int) -> str:
        return f"ratelimit:{scope}:{identifier}:{window_start}"


cache_keys = CacheKeys()


class CacheTTL:
    companion = settings.CACHE_TTL_COMPANION
    companion_list = settings.CACHE_TTL_COMPANION_LIST
    appointment = settings.CACHE_TTL_APPOINTMENT
    availability = settings.CACHE_TTL_AVAILABILITY


cache_ttl = CacheTTL()
