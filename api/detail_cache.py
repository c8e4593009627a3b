"""
Short-TTL read-through cache for video detail payloads.

Provides two implementations:
- DetailCache: In-memory cache for single-process deployments
- RedisDetailCache: process-local L1 in front of a shared Redis tier

Use create_detail_cache() factory function to get the appropriate implementation.

Keys are fingerprints of (scope, params): "{namespace}:{scope}:{sha1(params)}"
where params are serialized with sorted keys, so {"a": 1, "b": 2} and
{"b": 2, "a": 1} share an entry. Entries are stored serialized and replaced
wholesale; a reader can never see a partially updated payload.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from api.redis_client import RedisClient

logger = logging.getLogger(__name__)

VIDEO_DETAIL_SCOPE = "video:detail"


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache probe."""

    hit: bool
    value: Optional[Any]
    source: str  # l1, redis, miss, expired, disabled, no-redis, error
    key: str


def stable_serialize(params: Dict[str, Any]) -> str:
    """JSON with sorted keys and no whitespace; datetimes become ISO strings."""
    return json.dumps(params, sort_keys=True, separators=(",", ":"), default=_json_default)


def _json_default(value: Any) -> str:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def build_cache_key(namespace: str, scope: str, params: Optional[Dict[str, Any]] = None) -> str:
    digest = hashlib.sha1(stable_serialize(params or {}).encode("utf-8")).hexdigest()
    return f"{namespace}:{scope}:{digest}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class DetailCache:
    """
    In-memory TTL cache bounded to max_entries.

    When full, the oldest inserted entry is evicted first. Designed for
    single-process deployments; each process keeps its own entries.
    """

    def __init__(
        self,
        namespace: str = "vixora",
        default_ttl: int = 30,
        enabled: bool = True,
        max_entries: int = 300,
    ):
        self._namespace = namespace
        self._default_ttl = default_ttl
        self._enabled = enabled
        self._max_entries = max_entries
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def key_for(self, scope: str, params: Optional[Dict[str, Any]] = None) -> str:
        return build_cache_key(self._namespace, scope, params)

    def _read_local(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry["expires_at_ms"] <= _now_ms():
            del self._entries[key]
            return None
        return entry["data"]

    def _write_local(self, key: str, data: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = {"data": data, "expires_at_ms": _now_ms() + ttl_seconds * 1000}

    async def get(self, scope: str, params: Optional[Dict[str, Any]] = None) -> CacheLookup:
        key = self.key_for(scope, params)
        if not self._enabled:
            return CacheLookup(hit=False, value=None, source="disabled", key=key)

        data = self._read_local(key)
        if data is None:
            return CacheLookup(hit=False, value=None, source="miss", key=key)
        return CacheLookup(hit=True, value=json.loads(data), source="l1", key=key)

    async def set(
        self,
        scope: str,
        params: Optional[Dict[str, Any]],
        value: Any,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        """Unconditional overwrite with a fresh expiry."""
        if not self._enabled:
            return
        ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else self._default_ttl
        self._write_local(self.key_for(scope, params), json.dumps(value, default=_json_default), ttl)

    async def invalidate(self, scope: str, params: Optional[Dict[str, Any]] = None) -> None:
        self._entries.pop(self.key_for(scope, params), None)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self._enabled,
            "default_ttl_seconds": self._default_ttl,
            "entry_count": len(self._entries),
            "max_size": self._max_entries,
            "backend": "memory",
        }


class RedisDetailCache(DetailCache):
    """
    Redis-backed cache shared across API instances, with an optional L1.

    Redis stores {"d": value, "e": expires_at_ms} under the fingerprint with a
    matching EX. Any Redis error is logged and degrades to a miss; the API
    response never fails because the cache did.
    """

    def __init__(
        self,
        redis: RedisClient,
        namespace: str = "vixora",
        default_ttl: int = 30,
        enabled: bool = True,
        l1_enabled: bool = True,
        max_entries: int = 300,
    ):
        super().__init__(namespace=namespace, default_ttl=default_ttl, enabled=enabled, max_entries=max_entries)
        self._redis = redis
        self._l1_enabled = l1_enabled

    async def get(self, scope: str, params: Optional[Dict[str, Any]] = None) -> CacheLookup:
        key = self.key_for(scope, params)
        if not self._enabled:
            return CacheLookup(hit=False, value=None, source="disabled", key=key)

        if self._l1_enabled:
            data = self._read_local(key)
            if data is not None:
                return CacheLookup(hit=True, value=json.loads(data), source="l1", key=key)

        client = self._redis.get_client()
        if client is None:
            return CacheLookup(hit=False, value=None, source="no-redis", key=key)

        try:
            raw = await client.get(key)
            self._redis.record_success()
        except Exception as e:
            logger.warning(f"Detail cache get failed: {e}")
            self._redis.record_failure()
            return CacheLookup(hit=False, value=None, source="error", key=key)

        if not raw:
            return CacheLookup(hit=False, value=None, source="miss", key=key)

        try:
            stored = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"Discarding undecodable cache entry {key}")
            return CacheLookup(hit=False, value=None, source="error", key=key)

        remaining_ms = stored.get("e", 0) - _now_ms()
        if remaining_ms <= 0:
            try:
                await client.delete(key)
            except Exception as e:
                logger.debug(f"Failed to delete expired cache entry {key}: {e}")
            return CacheLookup(hit=False, value=None, source="expired", key=key)

        if self._l1_enabled:
            self._write_local(key, json.dumps(stored["d"], default=_json_default), max(1, remaining_ms // 1000))

        return CacheLookup(hit=True, value=stored["d"], source="redis", key=key)

    async def set(
        self,
        scope: str,
        params: Optional[Dict[str, Any]],
        value: Any,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        if not self._enabled:
            return

        key = self.key_for(scope, params)
        ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else self._default_ttl
        data = json.dumps(value, default=_json_default)

        if self._l1_enabled:
            self._write_local(key, data, ttl)

        client = self._redis.get_client()
        if client is None:
            return

        payload = json.dumps({"d": json.loads(data), "e": _now_ms() + ttl * 1000})
        try:
            await client.set(key, payload, ex=ttl)
            self._redis.record_success()
        except Exception as e:
            logger.warning(f"Detail cache set failed: {e}")
            self._redis.record_failure()

    async def invalidate(self, scope: str, params: Optional[Dict[str, Any]] = None) -> None:
        key = self.key_for(scope, params)
        self._entries.pop(key, None)
        client = self._redis.get_client()
        if client is None:
            return
        try:
            await client.delete(key)
        except Exception as e:
            logger.warning(f"Detail cache invalidate failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({"backend": "redis", "l1_enabled": self._l1_enabled, "connected": self._redis.is_available})
        return stats


# Type alias for either cache implementation
DetailCacheType = Union[DetailCache, RedisDetailCache]


def create_detail_cache(
    storage_url: str = "memory://",
    redis: Optional[RedisClient] = None,
    namespace: str = "vixora",
    default_ttl: int = 30,
    enabled: bool = True,
    l1_enabled: bool = True,
    max_entries: int = 300,
) -> DetailCacheType:
    """
    Factory function to create the appropriate detail cache implementation.

    Args:
        storage_url: "memory://" for a per-process cache, or a Redis URL for a shared one.
        redis: Connected RedisClient to use for the shared tier.
        namespace: Key namespace prefix
        default_ttl: TTL applied when set() is called without one
        enabled: Whether caching is enabled
        l1_enabled: Keep a process-local tier in front of Redis
        max_entries: Bound on process-local entries

    Returns:
        Either DetailCache (memory) or RedisDetailCache (Redis) instance
    """
    if not enabled:
        return DetailCache(namespace=namespace, default_ttl=default_ttl, enabled=False, max_entries=max_entries)

    if storage_url.startswith(("redis://", "rediss://")):
        if redis is None:
            logger.warning("Detail cache configured for Redis but no Redis client available, using memory")
        else:
            return RedisDetailCache(
                redis,
                namespace=namespace,
                default_ttl=default_ttl,
                enabled=enabled,
                l1_enabled=l1_enabled,
                max_entries=max_entries,
            )

    return DetailCache(namespace=namespace, default_ttl=default_ttl, enabled=enabled, max_entries=max_entries)
