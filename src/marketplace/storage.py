from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as redis
from redis.exceptions import RedisError

from lifecycle.data_models import UserContext

logger = logging.getLogger(__name__)

SAVED_CARS_KEY = "savedCars"
PREFERENCES_KEY = "userPreferences"

DEFAULT_PREFERENCES: dict[str, Any] = {
    "emailNotifications": True,
    "smsNotifications": False,
    "marketingEmails": True,
}


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal JSON key-value interface; any backend can stand in."""

    async def get(self, key: str) -> Any | None: ...
    async def set(self, key: str, value: Any) -> None: ...
    async def remove(self, key: str) -> bool: ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    async def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return sorted(self._data)


class RedisStore:
    """Redis-backed store that degrades to process memory when redis is down."""

    def __init__(self, redis_url: str, namespace: str = "carlot") -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self._client: Any = None
        self._mem = MemoryStore()

    def _build_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def connect(self) -> None:
        client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await asyncio.wait_for(client.ping(), timeout=0.75)
            self._client = client
        except (RedisError, OSError, asyncio.TimeoutError):
            logger.warning("Redis unavailable at %s, using in-memory storage", self.redis_url)
            await client.aclose()
            self._client = None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await asyncio.wait_for(self._client.ping(), timeout=0.75))
        except (RedisError, OSError, asyncio.TimeoutError):
            return False

    async def get(self, key: str) -> Any | None:
        full_key = self._build_key(key)
        if self._client is not None:
            try:
                raw = await self._client.get(full_key)
                return None if raw is None else json.loads(raw)
            except RedisError:
                logger.warning("Redis get failed for %s", full_key)
        return await self._mem.get(full_key)

    async def set(self, key: str, value: Any) -> None:
        full_key = self._build_key(key)
        if self._client is not None:
            try:
                await self._client.set(full_key, json.dumps(value))
                return
            except RedisError:
                logger.warning("Redis set failed for %s", full_key)
        await self._mem.set(full_key, value)

    async def remove(self, key: str) -> bool:
        full_key = self._build_key(key)
        if self._client is not None:
            try:
                return bool(await self._client.delete(full_key))
            except RedisError:
                logger.warning("Redis delete failed for %s", full_key)
        return await self._mem.remove(full_key)


class ScopedStore:
    """Prefixes every key with the signed-in user's id."""

    def __init__(self, store: KeyValueStore, user: UserContext) -> None:
        self._store = store
        self.prefix = f"user:{user.id}"

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Any | None:
        return await self._store.get(self._key(key))

    async def set(self, key: str, value: Any) -> None:
        await self._store.set(self._key(key), value)

    async def remove(self, key: str) -> bool:
        return await self._store.remove(self._key(key))


class Favorites:
    """Saved car ids for one buyer."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def ids(self) -> list[int]:
        saved = await self._store.get(SAVED_CARS_KEY)
        if not isinstance(saved, list):
            return []
        return [int(car_id) for car_id in saved]

    async def contains(self, car_id: int) -> bool:
        return car_id in await self.ids()

    async def add(self, car_id: int) -> bool:
        saved = await self.ids()
        if car_id in saved:
            return False
        saved.append(car_id)
        await self._store.set(SAVED_CARS_KEY, saved)
        return True

    async def remove(self, car_id: int) -> bool:
        saved = await self.ids()
        if car_id not in saved:
            return False
        saved.remove(car_id)
        await self._store.set(SAVED_CARS_KEY, saved)
        return True

    async def toggle(self, car_id: int) -> bool:
        """Returns True when the car ends up saved."""
        if await self.remove(car_id):
            return False
        await self.add(car_id)
        return True

    async def prune(self, live_ids: set[int]) -> list[int]:
        """Drop saved ids whose listing no longer exists."""
        saved = await self.ids()
        kept = [car_id for car_id in saved if car_id in live_ids]
        if kept != saved:
            await self._store.set(SAVED_CARS_KEY, kept)
        return kept


async def load_preferences(store: KeyValueStore) -> dict[str, Any]:
    stored = await store.get(PREFERENCES_KEY)
    prefs = dict(DEFAULT_PREFERENCES)
    if isinstance(stored, dict):
        prefs.update(stored)
    return prefs


async def save_preferences(store: KeyValueStore, updates: dict[str, Any]) -> dict[str, Any]:
    prefs = await load_preferences(store)
    prefs.update(updates)
    await store.set(PREFERENCES_KEY, prefs)
    return prefs
