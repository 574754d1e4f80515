"""
Expiring key-value store behind sessions and login handshakes.

RedisCache is used whenever REDIS_URL is set so that several API instances
share sessions; InMemoryCache covers single-process deployments and tests.
Both provide an atomic `pop`, which is what makes handshakes single-use.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Optional, TypeVar

import redis.asyncio as redis

from teamauth.core.config import settings

logger = logging.getLogger("teamauth.cache")

T = TypeVar("T")


class CacheBackend:
    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError

    async def pop(self, key: str) -> Optional[str]:
        """Return the value and remove the key in one step."""
        raise NotImplementedError

    async def expire(self, key: str, ttl: int) -> bool:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryCache(CacheBackend):
    """
    Process-local store. Entries are kept in least-recently-written order and
    the oldest are evicted once `max_entries` is reached.
    """

    def __init__(self, max_entries: int = 10000, clock: Optional[Callable[[], float]] = None):
        self._entries: "OrderedDict[str, tuple[str, Optional[float]]]" = OrderedDict()
        self._max_entries = max_entries
        self._now = clock or time.monotonic
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline is not None and deadline <= self._now():
            del self._entries[key]
            return None
        return value

    def _evict(self) -> None:
        now = self._now()
        for key in [k for k, (_, deadline) in self._entries.items() if deadline is not None and deadline <= now]:
            del self._entries[key]
        while len(self._entries) >= self._max_entries:
            self._entries.popitem(last=False)

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._live(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        async with self._lock:
            self._entries.pop(key, None)
            if len(self._entries) >= self._max_entries:
                self._evict()
            self._entries[key] = (value, self._now() + ttl if ttl else None)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def pop(self, key: str) -> Optional[str]:
        async with self._lock:
            value = self._live(key)
            self._entries.pop(key, None)
            return value

    async def expire(self, key: str, ttl: int) -> bool:
        async with self._lock:
            value = self._live(key)
            if value is None:
                return False
            self._entries[key] = (value, self._now() + ttl)
            return True


class RedisCache(CacheBackend):
    """
    Redis-backed store. Connection errors degrade to "missing key" so an outage
    logs users out instead of failing every request with a 500.
    """

    def __init__(self, url: str):
        self._client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )

    async def _call(self, op: str, action: Awaitable[T], fallback: T) -> T:
        try:
            return await action
        except redis.RedisError as e:
            logger.error(f"Redis {op} failed: {e}")
            return fallback

    async def get(self, key: str) -> Optional[str]:
        return await self._call("GET", self._client.get(key), None)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        return bool(await self._call("SET", self._client.set(key, value, ex=ttl or None), False))

    async def delete(self, key: str) -> bool:
        return await self._call("DEL", self._client.delete(key), 0) > 0

    async def pop(self, key: str) -> Optional[str]:
        return await self._call("GETDEL", self._client.getdel(key), None)

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._call("EXPIRE", self._client.expire(key, ttl), False))

    async def ping(self) -> bool:
        return bool(await self._call("PING", self._client.ping(), False))

    async def close(self) -> None:
        await self._client.aclose()


_cache: Optional[CacheBackend] = None


def get_cache() -> CacheBackend:
    global _cache
    if _cache is None:
        if settings.REDIS_URL:
            logger.info(f"Session store: Redis at {settings.REDIS_URL.rsplit('@', 1)[-1]}")
            _cache = RedisCache(settings.REDIS_URL)
        else:
            log = logger.warning if settings.is_production else logger.info
            log("Session store: process memory (set REDIS_URL to share sessions across instances)")
            _cache = InMemoryCache()
    return _cache


async def close_cache() -> None:
    global _cache
    if _cache is not None:
        await _cache.close()
        _cache = None
