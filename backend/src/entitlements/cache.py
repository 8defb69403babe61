"""
Record cache - read-through TTL cache for tenant and plan records.

Provides:
- RedisClient: Redis wrapper with graceful degradation
- InMemoryCache: process-local fallback with TTL
- RecordCache: JSON record cache keyed by kind and id

Only tenant and plan records go through here. Memberships are always read
live so role changes take effect on the next request, and usage counts
never come from any cache.

Tenant status and plan changes MUST call invalidate_tenant / invalidate_plan;
otherwise they become visible within one TTL (60s by default).
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from threading import Lock

import redis

logger = logging.getLogger(__name__)

DEFAULT_RECORD_TTL_SECONDS = 60


class RedisClient:
    """
    Redis client wrapper.

    When REDIS_URL is unset or the server cannot be reached, available is
    False and every call is a no-op, leaving the in-memory cache in charge.
    """

    def __init__(self, redis_url: Optional[str] = None):
        self._redis: Optional[redis.Redis] = None
        self._available = False
        self._connect(redis_url if redis_url is not None else os.getenv("REDIS_URL"))

    def _connect(self, redis_url: Optional[str]) -> None:
        if not redis_url:
            logger.info("REDIS_URL not configured - record cache is in-process only")
            return

        try:
            self._redis = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
            )
            self._redis.ping()
            self._available = True
            logger.info("Redis connection established for record cache")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e} - using in-process cache")
            self._redis = None

    @property
    def available(self) -> bool:
        return self._available and self._redis is not None

    def get(self, key: str) -> Optional[str]:
        if not self.available:
            return None
        try:
            return self._redis.get(key)
        except redis.RedisError as e:
            logger.warning(f"Redis GET failed: {e}")
            return None

    def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        if not self.available:
            return False
        try:
            self._redis.setex(key, ttl_seconds, value)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis SET failed: {e}")
            return False

    def delete(self, *keys: str) -> int:
        if not self.available or not keys:
            return 0
        try:
            return self._redis.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Redis DELETE failed: {e}")
            return 0


class InMemoryCache:
    """
    In-process TTL cache.

    Thread-safe; evicts the oldest entry when full.
    """

    def __init__(self, max_size: int = 10000, clock: Optional[Callable[[], datetime]] = None):
        self._cache: Dict[str, tuple] = {}
        self._lock = Lock()
        self._max_size = max_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, key: str, ttl_seconds: int) -> Optional[str]:
        with self._lock:
            if key not in self._cache:
                return None
            value, cached_at = self._cache[key]
            if (self._clock() - cached_at).total_seconds() >= ttl_seconds:
                del self._cache[key]
                return None
            return value

    def set(self, key: str, value: str) -> None:
        with self._lock:
            if key not in self._cache and len(self._cache) >= self._max_size:
                oldest_key = min(self._cache.keys(), key=lambda k: self._cache[k][1])
                del self._cache[oldest_key]
            self._cache[key] = (value, self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


class RecordCache:
    """
    Read-through cache for JSON-serializable records.

    Usage:
        cache = RecordCache(ttl_seconds=60)
        tenant = cache.get_or_load("tenant", tenant_id, lambda: store.load(tenant_id))
        cache.invalidate_tenant(tenant_id)
    """

    KEY_PREFIX = "access:"

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_RECORD_TTL_SECONDS,
        redis_client: Optional[RedisClient] = None,
        memory_cache: Optional[InMemoryCache] = None,
    ):
        self._ttl_seconds = ttl_seconds
        self._redis = redis_client or RedisClient()
        self._memory_cache = memory_cache or InMemoryCache()

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def _key(self, kind: str, record_id: str) -> str:
        return f"{self.KEY_PREFIX}{kind}:{record_id}"

    def get(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        key = self._key(kind, record_id)

        data = self._redis.get(key) if self._redis.available else None
        if data is None:
            data = self._memory_cache.get(key, self._ttl_seconds)
        if data is None:
            return None

        try:
            return json.loads(data)
        except ValueError:
            logger.warning("Discarding undecodable cache entry", extra={"key": key})
            self._memory_cache.delete(key)
            self._redis.delete(key)
            return None

    def set(self, kind: str, record_id: str, record: Dict[str, Any]) -> None:
        key = self._key(kind, record_id)
        data = json.dumps(record)
        if self._redis.available:
            self._redis.set(key, data, self._ttl_seconds)
        self._memory_cache.set(key, data)

    def get_or_load(
        self,
        kind: str,
        record_id: str,
        loader: Callable[[], Optional[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        """
        Return the cached record or load, cache and return it.

        Misses (loader returns None) are not cached.
        """
        cached = self.get(kind, record_id)
        if cached is not None:
            logger.debug("Record cache hit", extra={"kind": kind, "record_id": record_id})
            return cached

        record = loader()
        if record is not None:
            self.set(kind, record_id, record)
        return record

    def invalidate(self, kind: str, record_id: str, reason: Optional[str] = None) -> None:
        key = self._key(kind, record_id)
        self._memory_cache.delete(key)
        self._redis.delete(key)
        logger.info(
            "Invalidated cached record",
            extra={"kind": kind, "record_id": record_id, "reason": reason},
        )

    def invalidate_tenant(self, tenant_id: str, slug: Optional[str] = None, reason: Optional[str] = None) -> None:
        """Call on any tenant status or plan change."""
        self.invalidate("tenant", tenant_id, reason)
        if slug:
            self.invalidate("tenant_slug", slug, reason)

    def invalidate_plan(self, plan_id: str, name: Optional[str] = None, reason: Optional[str] = None) -> None:
        """
        Call on any package change. Pass name as well: tenants that reference
        a package by machine name have it cached under that key.
        """
        self.invalidate("plan", plan_id, reason)
        if name:
            self.invalidate("plan", name, reason)

    def clear(self) -> None:
        """Clear the in-process layer (tests, config reloads)."""
        self._memory_cache.clear()
