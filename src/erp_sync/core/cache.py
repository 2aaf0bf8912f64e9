"""Cache abstraction injected into the sync orchestrator.

Two implementations share the same async interface:
- MemoryCache: process-local dict with expiry computed from an injectable
  clock, so tests can advance time instead of sleeping.
- RedisCache: redis.asyncio backed, keys prefixed per namespace, values
  stored as JSON strings.
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import redis.asyncio as aioredis
import structlog

from src.erp_sync.config import get_settings

logger = structlog.get_logger(__name__)


class Cache(ABC):
    """Key/value cache with per-entry expiry."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store a JSON-serializable value."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key if present."""
        ...


class MemoryCache(Cache):
    """In-process cache with TTL driven by an injected clock.

    Expired entries are dropped when read and pruned on every set().

    Args:
        default_ttl_seconds: TTL applied when set() is called without one.
        clock: Monotonic time source in seconds. Defaults to time.monotonic.
    """

    def __init__(
        self,
        default_ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl_seconds is None:
            default_ttl_seconds = get_settings().MAPPING_CACHE_TTL_SECONDS
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for expired_key in expired:
            del self._entries[expired_key]
        self._entries[key] = (value, now + ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache(Cache):
    """Redis-backed cache. All keys are prefixed with ``{namespace}:``.

    Args:
        redis_client: redis.asyncio client created with decode_responses=True.
        namespace: Key prefix isolating this cache from other Redis users.
        default_ttl_seconds: TTL applied when set() is called without one.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        namespace: str = "erp_sync",
        default_ttl_seconds: int | None = None,
    ) -> None:
        if default_ttl_seconds is None:
            default_ttl_seconds = get_settings().MAPPING_CACHE_TTL_SECONDS
        self._redis = redis_client
        self._namespace = namespace
        self._default_ttl = default_ttl_seconds

    @classmethod
    def from_url(cls, url: str | None = None, **kwargs: Any) -> RedisCache:
        """Build a RedisCache from a URL (defaults to settings.REDIS_URL)."""
        client = aioredis.from_url(url or get_settings().REDIS_URL, decode_responses=True)
        return cls(client, **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("cache.corrupt_entry", key=key)
            await self._redis.delete(self._key(key))
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        await self._redis.set(self._key(key), json.dumps(value, default=str), ex=ttl)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def close(self) -> None:
        """Close the underlying Redis connection pool."""
        await self._redis.close()
