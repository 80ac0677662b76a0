"""
Redis-based distributed lock.

Serialises read-modify-write cycles on a shared storage key (the booking
collection blob) across API processes, so two near-simultaneous writers
cannot both read the same collection and overwrite each other.

Implementation uses SET NX EX for acquire and a Lua script for
atomic check-and-delete on release.  Acquire polls until the lock frees
up or ``wait_seconds`` elapses.
"""

from __future__ import annotations

import asyncio
import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(
        self,
        client: aioredis.Redis,
        key: str,
        ttl_seconds: int = 10,
        wait_seconds: float = 5.0,
        retry_interval: float = 0.05,
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.wait_seconds = wait_seconds
        self.retry_interval = retry_interval
        self.token = str(uuid.uuid4())

    async def try_acquire(self) -> bool:
        """Single attempt. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def acquire(self) -> bool:
        """Retry until acquired or ``wait_seconds`` have passed."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_seconds
        while True:
            if await self.try_acquire():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.retry_interval)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        acquired = await self.acquire()
        if not acquired:
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()
