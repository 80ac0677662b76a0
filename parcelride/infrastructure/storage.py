"""
Key-value storage collaborators.

The key-value booking repository keeps the whole booking collection as one
serialised blob under a fixed key.  A store only has to offer ``get``,
``set`` and a per-key ``lock`` that callers hold for the duration of a
read-modify-write cycle.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import AsyncContextManager, Optional

import redis.asyncio as aioredis

from .locks import DistributedLock


class KeyValueStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def lock(self, key: str) -> AsyncContextManager: ...


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store; one ``asyncio.Lock`` per key."""

    def __init__(self):
        self._data: dict[str, str] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def lock(self, key: str) -> asyncio.Lock:
        return self._locks[key]


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store; durable across restarts with AOF/RDB enabled."""

    def __init__(
        self,
        client: aioredis.Redis,
        namespace: str = "parcelride",
        lock_ttl_seconds: int = 10,
        lock_wait_seconds: float = 5.0,
    ):
        self.redis = client
        self.namespace = namespace
        self.lock_ttl_seconds = lock_ttl_seconds
        self.lock_wait_seconds = lock_wait_seconds

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self.redis.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self.redis.set(self._key(key), value)

    def lock(self, key: str) -> DistributedLock:
        return DistributedLock(
            self.redis,
            self._key(key),
            ttl_seconds=self.lock_ttl_seconds,
            wait_seconds=self.lock_wait_seconds,
        )
