"""
In-memory stand-in for redis.asyncio.Redis in tests.

Covers only the commands the relay uses, with decode_responses=True
semantics (everything comes back as str). ``lock()`` returns an
InMemoryLock with the acquire/extend/release contract of redis-py's
Lock. Setting ``fail = True`` makes every command raise ConnectionError,
like an unreachable server.
"""

import asyncio
import fnmatch
import time
from typing import Any
from uuid import uuid4

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError, LockNotOwnedError


def _slice_stop(end: int, length: int) -> int:
    return end + 1 if end >= 0 else length + end + 1


def _bound(value: Any) -> float:
    # "-inf" and "+inf" parse as floats too
    return float(value)


class InMemoryRedis:
    def __init__(self):
        self.strings: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.lists: dict[str, list[str]] = {}
        self.expires_at: dict[str, float] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _expire_stale(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.strings.pop(key, None)
            self.expires_at.pop(key, None)

    def _all_keys(self) -> set[str]:
        for key in list(self.expires_at):
            self._expire_stale(key)
        return set(self.strings) | set(self.hashes) | set(self.zsets) | set(self.lists)

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True

    # --- strings ---

    async def get(self, key: str) -> str | None:
        self._check()
        self._expire_stale(key)
        return self.strings.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None, px: int | None = None, nx: bool = False):
        self._check()
        self._expire_stale(key)
        if nx and key in self.strings:
            return None
        self.strings[key] = str(value)
        if ex is not None:
            self.expires_at[key] = time.monotonic() + ex
        elif px is not None:
            self.expires_at[key] = time.monotonic() + px / 1000
        else:
            self.expires_at.pop(key, None)
        return True

    async def incr(self, key: str) -> int:
        self._check()
        self._expire_stale(key)
        value = int(self.strings.get(key, "0")) + 1
        self.strings[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        self._expire_stale(key)
        if key not in self.strings:
            return False
        self.expires_at[key] = time.monotonic() + seconds
        return True

    async def ttl(self, key: str) -> int:
        self._check()
        self._expire_stale(key)
        if key not in self.strings:
            return -2
        if key not in self.expires_at:
            return -1
        return int(round(self.expires_at[key] - time.monotonic()))

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            self._expire_stale(key)
            for store in (self.strings, self.hashes, self.zsets, self.lists):
                if key in store:
                    del store[key]
                    removed += 1
            self.expires_at.pop(key, None)
        return removed

    async def exists(self, *keys: str) -> int:
        self._check()
        present = self._all_keys()
        return sum(1 for key in keys if key in present)

    async def scan_iter(self, match: str | None = None, count: int | None = None):
        self._check()
        for key in sorted(self._all_keys()):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    # --- hashes ---

    async def hset(self, name: str, key: str, value: Any) -> int:
        self._check()
        table = self.hashes.setdefault(name, {})
        is_new = key not in table
        table[key] = str(value)
        return int(is_new)

    async def hget(self, name: str, key: str) -> str | None:
        self._check()
        return self.hashes.get(name, {}).get(key)

    async def hdel(self, name: str, *keys: str) -> int:
        self._check()
        table = self.hashes.get(name, {})
        removed = sum(1 for key in keys if table.pop(key, None) is not None)
        if name in self.hashes and not table:
            del self.hashes[name]
        return removed

    async def hgetall(self, name: str) -> dict[str, str]:
        self._check()
        return dict(self.hashes.get(name, {}))

    async def hlen(self, name: str) -> int:
        self._check()
        return len(self.hashes.get(name, {}))

    # --- sorted sets ---

    async def zadd(self, name: str, mapping: dict[str, float]) -> int:
        self._check()
        zset = self.zsets.setdefault(name, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update({member: float(score) for member, score in mapping.items()})
        return added

    def _sorted(self, name: str) -> list[tuple[str, float]]:
        return sorted(self.zsets.get(name, {}).items(), key=lambda item: (item[1], item[0]))

    async def zpopmin(self, name: str, count: int = 1) -> list[tuple[str, float]]:
        self._check()
        popped = self._sorted(name)[:count]
        for member, _score in popped:
            del self.zsets[name][member]
        if name in self.zsets and not self.zsets[name]:
            del self.zsets[name]
        return popped

    async def zrangebyscore(self, name: str, min: Any, max: Any) -> list[str]:
        self._check()
        low, high = _bound(min), _bound(max)
        return [member for member, score in self._sorted(name) if low <= score <= high]

    async def zrem(self, name: str, *members: str) -> int:
        self._check()
        zset = self.zsets.get(name, {})
        removed = sum(1 for member in members if zset.pop(member, None) is not None)
        if name in self.zsets and not zset:
            del self.zsets[name]
        return removed

    async def zcard(self, name: str) -> int:
        self._check()
        return len(self.zsets.get(name, {}))

    # --- lists ---

    async def lpush(self, name: str, *values: Any) -> int:
        self._check()
        items = self.lists.setdefault(name, [])
        for value in values:
            items.insert(0, str(value))
        return len(items)

    async def lrange(self, name: str, start: int, end: int) -> list[str]:
        self._check()
        items = self.lists.get(name, [])
        return items[start:_slice_stop(end, len(items))]

    async def ltrim(self, name: str, start: int, end: int) -> bool:
        self._check()
        items = self.lists.get(name, [])
        self.lists[name] = items[start:_slice_stop(end, len(items))]
        if not self.lists[name]:
            del self.lists[name]
        return True

    async def llen(self, name: str) -> int:
        self._check()
        return len(self.lists.get(name, []))

    async def lrem(self, name: str, count: int, value: Any) -> int:
        self._check()
        items = self.lists.get(name, [])
        kept = [item for item in items if item != str(value)]
        removed = len(items) - len(kept)
        if name in self.lists:
            self.lists[name] = kept
        return removed

    # --- locks ---

    def lock(
        self,
        name: str,
        timeout: float | None = None,
        sleep: float = 0.1,
        blocking: bool = True,
        blocking_timeout: float | None = None,
        thread_local: bool = True,
    ) -> "InMemoryLock":
        return InMemoryLock(self, name, timeout, sleep, blocking, blocking_timeout)


class InMemoryLock:
    """Token lease stored as a string key with a millisecond expiry."""

    def __init__(
        self,
        redis: InMemoryRedis,
        name: str,
        timeout: float | None,
        sleep: float,
        blocking: bool,
        blocking_timeout: float | None,
    ):
        self.redis = redis
        self.name = name
        self.timeout = timeout
        self.sleep = sleep
        self.blocking = blocking
        self.blocking_timeout = blocking_timeout
        self.token: str | None = None

    def _px(self, seconds: float | None) -> int | None:
        return None if seconds is None else int(seconds * 1000)

    def _owned(self) -> bool:
        self.redis._expire_stale(self.name)
        return self.token is not None and self.redis.strings.get(self.name) == self.token

    async def acquire(self, blocking: bool | None = None, blocking_timeout: float | None = None) -> bool:
        blocking = self.blocking if blocking is None else blocking
        blocking_timeout = self.blocking_timeout if blocking_timeout is None else blocking_timeout
        token = uuid4().hex
        deadline = None if blocking_timeout is None else time.monotonic() + blocking_timeout
        while True:
            if await self.redis.set(self.name, token, nx=True, px=self._px(self.timeout)):
                self.token = token
                return True
            if not blocking or (deadline is not None and time.monotonic() >= deadline):
                return False
            await asyncio.sleep(self.sleep)

    async def extend(self, additional_time: float, replace_ttl: bool = False) -> bool:
        self.redis._check()
        if self.token is None:
            raise LockError("Cannot extend an unlocked lock")
        if not self._owned():
            raise LockNotOwnedError("Cannot extend a lock that's no longer owned")
        if replace_ttl:
            self.redis.expires_at[self.name] = time.monotonic() + additional_time
        else:
            self.redis.expires_at[self.name] = self.redis.expires_at.get(self.name, time.monotonic()) + additional_time
        return True

    async def release(self) -> None:
        self.redis._check()
        if self.token is None:
            raise LockError("Cannot release an unlocked lock")
        owned = self._owned()
        self.token = None
        if not owned:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        del self.redis.strings[self.name]
        self.redis.expires_at.pop(self.name, None)
