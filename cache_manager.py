"""
Read-through cache for catalog responses.

Entries live in process memory and, when ``REDIS_URL`` is configured, in Redis
as well so several API workers share them.
"""

import json
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import redis

from config import settings

logger = logging.getLogger(__name__)

MAX_MEMORY_ENTRIES = 1000


class CacheManager:
    """Key/value cache with a fixed TTL; Redis first, memory as the fallback."""

    def __init__(self, redis_url: Optional[str] = None, default_ttl: Optional[int] = None):
        self.redis_client = None
        self.default_ttl = default_ttl if default_ttl is not None else settings.cache_ttl
        self.memory_cache: Dict[str, tuple] = {}
        self.memory_cache_lock = threading.RLock()
        self.cache_stats = {
            'hits': 0,
            'misses': 0,
            'redis_hits': 0,
            'memory_hits': 0
        }
        self._init_redis(redis_url if redis_url is not None else settings.redis_url)

    def _init_redis(self, redis_url: Optional[str]):
        if not redis_url:
            logger.info("REDIS_URL not set, using in-memory cache only")
            return

        try:
            self.redis_client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=1,
                socket_timeout=1,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.redis_client.ping()
            logger.info("Redis cache connected at %s", redis_url)
        except redis.RedisError as e:
            logger.warning("Redis unavailable (%s), using in-memory cache only", e)
            self.redis_client = None

    def _make_key(self, key: str) -> str:
        return f"library_cache:{key}"

    def get(self, key: str) -> Optional[Any]:
        if self.redis_client:
            try:
                data = self.redis_client.get(self._make_key(key))
                if data is not None:
                    self.cache_stats['hits'] += 1
                    self.cache_stats['redis_hits'] += 1
                    return json.loads(data)
            except redis.RedisError as e:
                logger.warning("Redis get failed: %s", e)

        with self.memory_cache_lock:
            cache_entry = self.memory_cache.get(key)
            if cache_entry:
                value, expires_at = cache_entry
                if datetime.now() < expires_at:
                    self.cache_stats['hits'] += 1
                    self.cache_stats['memory_hits'] += 1
                    return value
                del self.memory_cache[key]

        self.cache_stats['misses'] += 1
        return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store a JSON-serializable value for ``ttl_seconds`` (default ``CACHE_TTL``)."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        if self.redis_client:
            try:
                self.redis_client.setex(self._make_key(key), ttl, json.dumps(value, default=str))
            except redis.RedisError as e:
                logger.warning("Redis set failed: %s", e)

        with self.memory_cache_lock:
            self.memory_cache[key] = (value, datetime.now() + timedelta(seconds=ttl))
            if len(self.memory_cache) > MAX_MEMORY_ENTRIES:
                # Evict the 10% closest to expiry
                oldest = sorted(self.memory_cache.items(), key=lambda item: item[1][1])
                for k, _ in oldest[:MAX_MEMORY_ENTRIES // 10]:
                    self.memory_cache.pop(k, None)

    def delete(self, key: str) -> bool:
        redis_deleted = False
        if self.redis_client:
            try:
                redis_deleted = bool(self.redis_client.delete(self._make_key(key)))
            except redis.RedisError as e:
                logger.warning("Redis delete failed: %s", e)

        with self.memory_cache_lock:
            memory_deleted = self.memory_cache.pop(key, None) is not None

        return redis_deleted or memory_deleted

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop every key matching a trailing-``*`` prefix pattern such as ``books:*``."""
        count = 0
        if self.redis_client:
            try:
                keys = list(self.redis_client.scan_iter(match=self._make_key(pattern)))
                if keys:
                    count += self.redis_client.delete(*keys)
            except redis.RedisError as e:
                logger.warning("Redis pattern invalidation failed: %s", e)

        prefix = pattern.replace('*', '')
        with self.memory_cache_lock:
            for key in [k for k in self.memory_cache if k.startswith(prefix)]:
                self.memory_cache.pop(key, None)
                count += 1

        return count

    def clear(self) -> None:
        self.invalidate_pattern("*")
        with self.memory_cache_lock:
            self.memory_cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.cache_stats.copy()
        stats['redis_available'] = self.redis_client is not None
        stats['memory_cache_size'] = len(self.memory_cache)
        lookups = stats['hits'] + stats['misses']
        stats['hit_ratio'] = stats['hits'] / lookups if lookups else 0.0
        return stats


cache_manager = CacheManager()
