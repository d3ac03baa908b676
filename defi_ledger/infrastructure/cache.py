"""Cache capability: get / set / invalidate, backed by Redis or nothing at all"""

import json
import logging
from typing import Any, Optional, Protocol

import redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class Cache(Protocol):
    """What the core needs from a cache. Absence only costs performance."""

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...

    def invalidate(self, key: str) -> None: ...

    def invalidate_pattern(self, pattern: str) -> None: ...


class NullCache:
    """Cache that never hits"""

    def get(self, key: str) -> Optional[Any]:
        return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        return None

    def invalidate(self, key: str) -> None:
        return None

    def invalidate_pattern(self, pattern: str) -> None:
        return None


class RedisCache:
    """
    JSON values in Redis.

    Connection or command failures are logged and degrade to a miss; the
    database stays the source of truth.
    """

    def __init__(self, client: redis.Redis, prefix: str = "defi-ledger"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "defi-ledger") -> "RedisCache":
        client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=5.0, socket_connect_timeout=5.0)
        return cls(client, prefix)

    def _get_key(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    def get(self, key: str) -> Optional[Any]:
        redis_key = self._get_key(key)
        try:
            data = self.client.get(redis_key)
        except RedisError as e:
            logger.warning(f"Redis GET failed for {redis_key}: {e}")
            return None

        if data is None:
            logger.debug(f"Cache miss: {redis_key}")
            return None
        return json.loads(data)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        redis_key = self._get_key(key)
        try:
            self.client.set(redis_key, json.dumps(value, default=str), ex=ttl)
        except RedisError as e:
            logger.warning(f"Redis SET failed for {redis_key}: {e}")

    def invalidate(self, key: str) -> None:
        redis_key = self._get_key(key)
        try:
            self.client.delete(redis_key)
        except RedisError as e:
            logger.warning(f"Redis DELETE failed for {redis_key}: {e}")

    def invalidate_pattern(self, pattern: str) -> None:
        redis_pattern = self._get_key(pattern)
        try:
            keys = list(self.client.scan_iter(match=redis_pattern))
            if keys:
                self.client.delete(*keys)
        except RedisError as e:
            logger.warning(f"Redis pattern delete failed for {redis_pattern}: {e}")


def build_cache(redis_url: Optional[str]) -> Cache:
    """RedisCache when a URL is configured, NullCache otherwise"""
    if not redis_url:
        return NullCache()
    return RedisCache.from_url(redis_url)
