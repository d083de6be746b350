"""
Per-participant Locks

Serializes work for one participant: an asyncio lock inside the process
plus a Redis lease across processes. The lease is a redis-py Lock
(SET NX PX, token-checked extend and release) renewed while the block
runs, so a slow holder keeps it past lease_ms. The same task may
re-enter a lock it already holds.

If Redis is unreachable the lease is skipped and only the in-process
lock applies.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.asyncio.lock import Lock
from redis.exceptions import LockNotOwnedError, RedisError

from chatwoot_relay.errors import LockTimeout

logger = logging.getLogger(__name__)

LOCK_PREFIX = "relay:lock"


class ParticipantLock:
    """Keyed, task-reentrant lock."""

    def __init__(
        self,
        redis_client: aioredis.Redis | None = None,
        lease_ms: int = 30000,
        wait_seconds: float = 10.0,
        poll_interval: float = 0.05,
        prefix: str = LOCK_PREFIX,
    ):
        self.redis = redis_client
        self.lease_ms = lease_ms
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval
        self.prefix = prefix
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}
        self._owners: dict[str, asyncio.Task] = {}
        self._depth: dict[str, int] = {}

    def lease_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockTimeout: the lock was not obtained within wait_seconds
        """
        task = asyncio.current_task()
        if task is not None and self._owners.get(key) is task:
            self._depth[key] += 1
            try:
                yield
            finally:
                self._depth[key] -= 1
            return

        started = time.monotonic()
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
            except asyncio.TimeoutError:
                raise LockTimeout(key, time.monotonic() - started)

            self._owners[key] = task
            self._depth[key] = 1
            lease: Lock | None = None
            renewer: asyncio.Task | None = None
            try:
                remaining = self.wait_seconds - (time.monotonic() - started)
                lease = await self._acquire_lease(key, remaining)
                if lease is not None:
                    renewer = asyncio.create_task(self._renew_lease(key, lease), name=f"lease-renew-{key}")
                yield
            finally:
                if renewer is not None:
                    renewer.cancel()
                    await asyncio.gather(renewer, return_exceptions=True)
                if lease is not None:
                    await self._release_lease(key, lease)
                self._owners.pop(key, None)
                self._depth.pop(key, None)
                lock.release()
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                self._refs.pop(key, None)
                self._locks.pop(key, None)

    async def _acquire_lease(self, key: str, timeout: float) -> Lock | None:
        """Take the cross-process lease; None when Redis is not in use or down."""
        if self.redis is None:
            return None

        lease = self.redis.lock(
            self.lease_key(key),
            timeout=self.lease_ms / 1000,
            sleep=self.poll_interval,
            blocking_timeout=max(timeout, 0.0),
            thread_local=False,
        )
        try:
            acquired = await lease.acquire()
        except RedisError as e:
            logger.warning(f"Lock lease unavailable for {key}, continuing with local lock: {e}")
            return None
        if not acquired:
            raise LockTimeout(key, self.wait_seconds)
        return lease

    async def _renew_lease(self, key: str, lease: Lock) -> None:
        """Reset the lease TTL every third of lease_ms until cancelled."""
        interval = self.lease_ms / 3000
        while True:
            await asyncio.sleep(interval)
            try:
                await lease.extend(self.lease_ms / 1000, replace_ttl=True)
            except LockNotOwnedError:
                logger.error(f"Lock lease for {key} was lost while held")
                return
            except RedisError as e:
                logger.warning(f"Failed to renew lock lease for {key}: {e}")

    async def _release_lease(self, key: str, lease: Lock) -> None:
        try:
            await lease.release()
        except LockNotOwnedError:
            logger.warning(f"Lock lease for {key} expired before release")
        except RedisError as e:
            # The lease expires on its own after lease_ms
            logger.warning(f"Failed to release lock lease for {key}: {e}")
