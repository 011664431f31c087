"""
Cursor state persistence.

SearchState is stored by value (JSON) under its cursor id with a TTL. The
redis store degrades to the in-process store per operation when redis fails.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from apps.core.cache import CacheBackend, TTLCache
from apps.core.config import Settings, settings as default_settings
from apps.places.dto import SearchState

logger = logging.getLogger(__name__)


class CursorStore(ABC):
    kind = "abstract"

    @abstractmethod
    async def get(self, cursor_id: str) -> Optional[SearchState]:
        ...

    @abstractmethod
    async def set(self, state: SearchState) -> None:
        ...

    @abstractmethod
    async def delete(self, cursor_id: str) -> None:
        ...

    async def acquire_lock(self, cursor_id: str, owner: str) -> bool:
        """Advisory lock; stores that cannot lock report success."""
        return True

    async def release_lock(self, cursor_id: str, owner: str) -> None:
        return None

    async def aclose(self) -> None:
        return None


class MemoryCursorStore(CursorStore):
    """In-process store over an injected cache; snapshots are JSON so callers never share objects"""

    kind = "memory"

    def __init__(self, cache: Optional[CacheBackend] = None, ttl_seconds: int = 900, max_entries: int = 2000):
        self.ttl_seconds = ttl_seconds
        self.cache = cache if cache is not None else TTLCache(ttl_seconds, max_entries=max_entries)

    async def get(self, cursor_id: str) -> Optional[SearchState]:
        payload = self.cache.get(cursor_id)
        if payload is None:
            return None
        return SearchState.from_json(payload)

    async def set(self, state: SearchState) -> None:
        self.cache.set(state.cursor_id, state.to_json(), self.ttl_seconds)

    async def delete(self, cursor_id: str) -> None:
        self.cache.delete(cursor_id)


class RedisCursorStore(CursorStore):
    kind = "redis"

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        key_prefix: str = "places:discovery:cursor:",
        ttl_seconds: int = 900,
        lock_ttl_ms: int = 8000,
        fallback: Optional[MemoryCursorStore] = None,
    ):
        self.client = client
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self.lock_ttl_ms = lock_ttl_ms
        self.fallback = fallback or MemoryCursorStore(ttl_seconds=ttl_seconds)

    def _key(self, cursor_id: str) -> str:
        return f"{self.key_prefix}{cursor_id}"

    def _lock_key(self, cursor_id: str) -> str:
        return f"{self.key_prefix}{cursor_id}:lock"

    async def get(self, cursor_id: str) -> Optional[SearchState]:
        key = self._key(cursor_id)
        try:
            payload = await self.client.get(key)
        except RedisError as e:
            logger.warning("Redis get failed for %s, using memory store: %s", cursor_id[:8], e)
            return await self.fallback.get(cursor_id)

        if payload is None:
            return await self.fallback.get(cursor_id)
        try:
            return SearchState.from_json(payload)
        except (ValidationError, ValueError) as e:
            logger.warning("Corrupt cursor payload for %s, deleting: %s", cursor_id[:8], e)
            try:
                await self.client.delete(key)
            except RedisError as delete_error:
                logger.debug("Could not delete corrupt cursor %s: %s", cursor_id[:8], delete_error)
            return await self.fallback.get(cursor_id)

    async def set(self, state: SearchState) -> None:
        try:
            await self.client.set(self._key(state.cursor_id), state.to_json(), ex=self.ttl_seconds)
        except RedisError as e:
            logger.warning("Redis set failed for %s, using memory store: %s", state.cursor_id[:8], e)
            await self.fallback.set(state)

    async def delete(self, cursor_id: str) -> None:
        await self.fallback.delete(cursor_id)
        try:
            await self.client.delete(self._key(cursor_id))
        except RedisError as e:
            logger.warning("Redis delete failed for %s: %s", cursor_id[:8], e)

    async def acquire_lock(self, cursor_id: str, owner: str) -> bool:
        try:
            acquired = await self.client.set(self._lock_key(cursor_id), owner, nx=True, px=self.lock_ttl_ms)
        except RedisError as e:
            # fail open: continue without the lock
            logger.warning("Cursor lock unavailable for %s, continuing unlocked: %s", cursor_id[:8], e)
            return True
        return bool(acquired)

    async def release_lock(self, cursor_id: str, owner: str) -> None:
        key = self._lock_key(cursor_id)
        try:
            if await self.client.get(key) == owner:
                await self.client.delete(key)
        except RedisError as e:
            logger.warning("Cursor lock release failed for %s: %s", cursor_id[:8], e)

    async def aclose(self) -> None:
        await self.client.aclose()


def create_cursor_store(config: Optional[Settings] = None) -> CursorStore:
    """Redis when configured, otherwise in-process."""
    config = config or default_settings
    memory = MemoryCursorStore(ttl_seconds=config.cursor_ttl_sec, max_entries=config.memory_cursor_max_entries)
    if not config.redis_url:
        logger.info("Cursor store: memory (ttl=%ss)", config.cursor_ttl_sec)
        return memory
    client = aioredis.from_url(config.redis_url, decode_responses=True)
    logger.info("Cursor store: redis (prefix=%s, ttl=%ss)", config.cursor_key_prefix, config.cursor_ttl_sec)
    return RedisCursorStore(
        client,
        key_prefix=config.cursor_key_prefix,
        ttl_seconds=config.cursor_ttl_sec,
        lock_ttl_ms=config.cursor_lock_ttl_ms,
        fallback=memory,
    )
