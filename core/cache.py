"""
Caching System for the Video Feed API.

The feed is served cache-aside: pages are computed from the catalog, stored
for a short TTL and dropped wholesale whenever a counted entity changes. This
module provides the storage half of that arrangement.

Key Components:
- CacheBackend (ABC): The interface every backend implements, including
  pattern-based key listing so a whole key namespace (e.g. `feed:*`) can be
  invalidated at once.
- MemoryCacheBackend: In-process dictionary with TTLs and LRU eviction. Used
  for single-instance deployments, development and tests.
- RedisCacheBackend: Shared backend on `redis.asyncio`. Values are stored as
  JSON and pattern listing uses `SCAN` so it never blocks the server.
- CacheManager: Facade used by the services. It never lets a backend failure
  escape: reads degrade to a miss, writes and deletes report `False`, and the
  error is logged.

Architectural Design:
- Strategy Pattern: Backends are interchangeable behind `CacheBackend`.
- Facade Pattern: `CacheManager` gives the services a small, failure-free API.
- Explicit Wiring: The manager is created by the application lifespan and
  passed to the services that need it; there is no module-level instance.
"""

import asyncio
import fnmatch
import json
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from core.exceptions import CacheError
from core.logging_config import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    """Cache entry with metadata"""

    value: Any
    created_at: datetime
    expires_at: Optional[datetime] = None
    access_count: int = 0
    last_accessed: Optional[datetime] = None
    size_bytes: int = 0

    def __post_init__(self):
        if self.last_accessed is None:
            self.last_accessed = self.created_at
        if self.size_bytes == 0:
            self.size_bytes = sys.getsizeof(self.value)

    @property
    def is_expired(self) -> bool:
        """Check if cache entry has expired"""
        if self.expires_at is None:
            return False
        return _utcnow() > self.expires_at


class CacheBackend(ABC):
    """Abstract base class for cache backends"""

    name = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get cache entry value by key"""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Set cache entry with optional TTL in seconds"""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete cache entry"""

    @abstractmethod
    async def clear(self) -> bool:
        """Clear all cache entries"""

    @abstractmethod
    async def keys(self, pattern: str = "*") -> List[str]:
        """Get cache keys matching a glob pattern"""

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

    async def close(self) -> None:
        """Release backend resources"""


class MemoryCacheBackend(CacheBackend):
    """In-memory cache backend with LRU eviction"""

    name = "memory"

    def __init__(
        self, max_size: int = 1000, max_memory_mb: int = 100, default_ttl: int = 300
    ):
        self.max_size = max_size
        self.max_memory_bytes = max_memory_mb * 1024 * 1024
        self.default_ttl = default_ttl
        self.cache: Dict[str, CacheEntry] = {}
        self.access_order: List[str] = []  # LRU order, oldest first
        self.total_size_bytes = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                self.misses += 1
                logger.debug(f"Cache miss for key: {key}")
                return None

            if entry.is_expired:
                self._remove_key(key)
                self.misses += 1
                logger.debug(f"Cache expired for key: {key}")
                return None

            entry.access_count += 1
            entry.last_accessed = _utcnow()

            self.access_order.remove(key)
            self.access_order.append(key)

            self.hits += 1
            logger.debug(f"Cache hit for key: {key}")
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        async with self._lock:
            ttl = self.default_ttl if ttl is None else ttl
            now = _utcnow()
            expires_at = now + timedelta(seconds=ttl) if ttl else None

            entry = CacheEntry(value=value, created_at=now, expires_at=expires_at)

            if key in self.cache:
                self._remove_key(key)

            self._ensure_capacity(entry.size_bytes)

            self.cache[key] = entry
            self.access_order.append(key)
            self.total_size_bytes += entry.size_bytes

            logger.debug(f"Cache set for key: {key}, TTL: {ttl}")
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self.cache:
                self._remove_key(key)
                logger.debug(f"Cache deleted for key: {key}")
                return True
            return False

    async def clear(self) -> bool:
        async with self._lock:
            self.cache.clear()
            self.access_order.clear()
            self.total_size_bytes = 0
            logger.info("Cache cleared")
            return True

    async def keys(self, pattern: str = "*") -> List[str]:
        async with self._lock:
            if pattern == "*":
                return list(self.cache.keys())
            return [key for key in self.cache if fnmatch.fnmatchcase(key, pattern)]

    async def exists(self, key: str) -> bool:
        """Check if key exists in cache"""
        async with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                return False
            if entry.is_expired:
                self._remove_key(key)
                return False
            return True

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            total_requests = self.hits + self.misses
            hit_rate = (self.hits / total_requests) if total_requests > 0 else 0.0

            return {
                "backend": self.name,
                "entries": len(self.cache),
                "max_size": self.max_size,
                "memory_usage_bytes": self.total_size_bytes,
                "max_memory_bytes": self.max_memory_bytes,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": hit_rate,
                "evictions": self.evictions,
            }

    def _remove_key(self, key: str) -> None:
        """Remove key from cache and update tracking; caller holds the lock"""
        entry = self.cache.pop(key, None)
        if entry is not None:
            self.total_size_bytes -= entry.size_bytes
        if key in self.access_order:
            self.access_order.remove(key)

    def _ensure_capacity(self, new_entry_size: int) -> None:
        """Evict least recently used entries until the new entry fits"""
        while self.access_order and (
            len(self.cache) >= self.max_size
            or self.total_size_bytes + new_entry_size > self.max_memory_bytes
        ):
            lru_key = self.access_order[0]
            self._remove_key(lru_key)
            self.evictions += 1
            logger.debug(f"Evicted LRU key: {lru_key}")


class RedisCacheBackend(CacheBackend):
    """Redis cache backend storing JSON-encoded values"""

    name = "redis"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        client: Optional[aioredis.Redis] = None,
        scan_count: int = 500,
    ):
        self.redis_url = redis_url
        self.scan_count = scan_count
        self._redis = client or aioredis.from_url(redis_url, decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            raise CacheError("get", str(e)) from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CacheError("decode", str(e)) from e

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        try:
            payload = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            raise CacheError("encode", str(e)) from e
        try:
            if ttl:
                await self._redis.set(key, payload, px=int(ttl * 1000))
            else:
                await self._redis.set(key, payload)
        except RedisError as e:
            raise CacheError("set", str(e)) from e
        return True

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(key))
        except RedisError as e:
            raise CacheError("delete", str(e)) from e

    async def clear(self) -> bool:
        try:
            await self._redis.flushdb()
        except RedisError as e:
            raise CacheError("clear", str(e)) from e
        return True

    async def keys(self, pattern: str = "*") -> List[str]:
        try:
            return [
                key
                async for key in self._redis.scan_iter(
                    match=pattern, count=self.scan_count
                )
            ]
        except RedisError as e:
            raise CacheError("keys", str(e)) from e

    async def stats(self) -> Dict[str, Any]:
        try:
            info = await self._redis.info("stats")
            keyspace_hits = info.get("keyspace_hits", 0)
            keyspace_misses = info.get("keyspace_misses", 0)
        except RedisError as e:
            raise CacheError("stats", str(e)) from e
        total = keyspace_hits + keyspace_misses
        return {
            "backend": self.name,
            "hits": keyspace_hits,
            "misses": keyspace_misses,
            "hit_rate": keyspace_hits / total if total else 0.0,
        }

    async def close(self) -> None:
        await self._redis.aclose()


class CacheManager:
    """High-level cache manager; never raises on backend failures"""

    def __init__(self, backend: CacheBackend):
        self.backend = backend
        self.logger = get_logger(f"{__name__}.CacheManager")

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache, or None on miss or error"""
        try:
            return await self.backend.get(key)
        except Exception as e:
            self.logger.error(f"Cache get error for key {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Set value in cache"""
        try:
            return await self.backend.set(key, value, ttl)
        except Exception as e:
            self.logger.error(f"Cache set error for key {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete value from cache"""
        try:
            return await self.backend.delete(key)
        except Exception as e:
            self.logger.error(f"Cache delete error for key {key}: {e}")
            return False

    async def invalidate_pattern(self, pattern: str) -> int:
        """Invalidate all keys matching pattern; returns the number removed"""
        try:
            keys = await self.backend.keys(pattern)
            count = 0
            for key in keys:
                if await self.backend.delete(key):
                    count += 1
            self.logger.info(f"Invalidated {count} keys matching pattern: {pattern}")
            return count
        except Exception as e:
            self.logger.error(f"Cache invalidation error for pattern {pattern}: {e}")
            return 0

    async def health_check(self) -> Dict[str, Any]:
        """Perform cache health check"""
        try:
            test_key = "__health_check__"
            await self.backend.set(test_key, "ok", 5)
            retrieved = await self.backend.get(test_key)
            await self.backend.delete(test_key)
            stats = await self.backend.stats()

            return {
                "status": "healthy" if retrieved == "ok" else "unhealthy",
                "backend_type": stats.get("backend", self.backend.name),
                "stats": stats,
            }
        except Exception as e:
            self.logger.error(f"Cache health check failed: {e}")
            return {
                "status": "unhealthy",
                "backend_type": self.backend.name,
                "error": str(e),
            }

    async def close(self) -> None:
        try:
            await self.backend.close()
        except Exception as e:
            self.logger.warning(f"Cache close failed: {e}")


def create_cache_backend(
    kind: str, redis_url: str = "", default_ttl: int = 300
) -> CacheBackend:
    """Build the backend named by configuration"""
    if kind == "redis":
        return RedisCacheBackend(redis_url)
    if kind == "memory":
        return MemoryCacheBackend(max_size=2000, max_memory_mb=200, default_ttl=default_ttl)
    raise ValueError(f"Unknown cache backend: {kind}")


def cache_key(*key_parts) -> str:
    """Generate a cache key from parts"""
    return ":".join(str(part) for part in key_parts if part is not None)
