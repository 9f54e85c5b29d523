"""
Redis-based distributed lock for per-ride background jobs.

A job that drives a ride from outside a request (the demo auto-progress
run) takes ``lock:{job}:{ride_id}`` first, so several API instances
receiving the same simulate request cannot run it twice.

SET NX EX acquires; a Lua check-and-delete releases only our own token,
so a lock that expired and was re-taken elsewhere is left alone.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

from rideswift.domain.errors import ConflictError

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(ConflictError):
    def __init__(self, key: str):
        super().__init__(f"Lock {key} is held by another worker")
        self.key = key


class DistributedLock:
    def __init__(self, client: aioredis.Redis, key: str, ttl_seconds: int = 30):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    @classmethod
    def for_ride(
        cls, client: aioredis.Redis, job: str, ride_id: str, ttl_seconds: int = 30
    ) -> "DistributedLock":
        return cls(client, f"{job}:{ride_id}", ttl_seconds=ttl_seconds)

    async def acquire(self) -> bool:
        return bool(await self.redis.set(self.key, self.token, nx=True, ex=self.ttl))

    async def release(self) -> None:
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(self.key)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
