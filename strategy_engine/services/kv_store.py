"""
Key-Value Backends
Strategy Engine

Ordered key-value storage used by the strategy store:
- String records with optional TTL
- Membership sets (user/type/status/active indexes)
- Sorted sets (event logs ordered by timestamp)
- Atomic counters
- Compare-and-set for optimistic concurrency

RedisBackend talks to Redis through redis.asyncio. MemoryBackend keeps
everything in process and is used for tests and local runs.
"""

import time
from typing import Dict, List, Optional, Set, Tuple

import redis.asyncio as redis
from redis.exceptions import WatchError
from loguru import logger

from strategy_engine.core.config import RedisSettings


class KeyValueBackend:
    """
    Base class for key-value storage.

    Keys are fully qualified; prefixing is the caller's concern.
    """

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> None:
        """Store ``value``; ``ex`` is a TTL in seconds."""
        raise NotImplementedError

    async def delete(self, *keys: str) -> int:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    async def compare_and_set(self, key: str, expected: Optional[str], value: str) -> bool:
        """
        Write ``value`` only if the key still holds ``expected``.

        ``expected=None`` means the key must not exist. Returns False when
        another writer got there first.
        """
        raise NotImplementedError

    async def incr(self, key: str) -> int:
        raise NotImplementedError

    # Sets

    async def sadd(self, key: str, *members: str) -> int:
        raise NotImplementedError

    async def srem(self, key: str, *members: str) -> int:
        raise NotImplementedError

    async def smembers(self, key: str) -> Set[str]:
        raise NotImplementedError

    async def scard(self, key: str) -> int:
        raise NotImplementedError

    # Sorted sets

    async def zadd(self, key: str, member: str, score: float) -> None:
        raise NotImplementedError

    async def zrem(self, key: str, *members: str) -> int:
        raise NotImplementedError

    async def zcard(self, key: str) -> int:
        raise NotImplementedError

    async def zrange(self, key: str, start: int, stop: int, desc: bool = False) -> List[str]:
        """Members by rank, ``stop`` inclusive, negative indexes from the end."""
        raise NotImplementedError

    async def zrangebyscore(
        self,
        key: str,
        min_score: float = float("-inf"),
        max_score: float = float("inf"),
        desc: bool = False,
        offset: int = 0,
        count: Optional[int] = None,
    ) -> List[str]:
        """Members with ``min_score <= score <= max_score``; ``count=None`` means no limit."""
        raise NotImplementedError

    async def zcount(self, key: str, min_score: float, max_score: float) -> int:
        raise NotImplementedError

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        pass


# =============================================================================
# Redis
# =============================================================================

class RedisBackend(KeyValueBackend):
    """Backend on a shared Redis instance."""

    def __init__(
        self,
        settings: Optional[RedisSettings] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.settings = settings or RedisSettings()
        self._client = client or redis.Redis.from_url(
            self.settings.url,
            decode_responses=True,
            max_connections=self.settings.max_connections,
            socket_timeout=self.settings.socket_timeout,
        )

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        return await self._client.mget(keys)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> None:
        await self._client.set(key, value, ex=ex)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._client.delete(*keys)

    async def exists(self, key: str) -> bool:
        return await self._client.exists(key) > 0

    async def compare_and_set(self, key: str, expected: Optional[str], value: str) -> bool:
        async with self._client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != expected:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, value)
                await pipe.execute()
                return True
            except WatchError:
                logger.debug(f"Concurrent write detected on {key}")
                return False

    async def incr(self, key: str) -> int:
        return await self._client.incr(key)

    async def sadd(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self._client.sadd(key, *members)

    async def srem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self._client.srem(key, *members)

    async def smembers(self, key: str) -> Set[str]:
        return set(await self._client.smembers(key))

    async def scard(self, key: str) -> int:
        return await self._client.scard(key)

    async def zadd(self, key: str, member: str, score: float) -> None:
        await self._client.zadd(key, {member: score})

    async def zrem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self._client.zrem(key, *members)

    async def zcard(self, key: str) -> int:
        return await self._client.zcard(key)

    async def zrange(self, key: str, start: int, stop: int, desc: bool = False) -> List[str]:
        return await self._client.zrange(key, start, stop, desc=desc)

    async def zrangebyscore(
        self,
        key: str,
        min_score: float = float("-inf"),
        max_score: float = float("inf"),
        desc: bool = False,
        offset: int = 0,
        count: Optional[int] = None,
    ) -> List[str]:
        low, high = _score_bound(min_score), _score_bound(max_score)
        page = {}
        if offset or count is not None:
            page = {"start": offset, "num": -1 if count is None else count}
        if desc:
            return await self._client.zrevrangebyscore(key, high, low, **page)
        return await self._client.zrangebyscore(key, low, high, **page)

    async def zcount(self, key: str, min_score: float, max_score: float) -> int:
        return await self._client.zcount(key, _score_bound(min_score), _score_bound(max_score))

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        return await self._client.zremrangebyscore(key, _score_bound(min_score), _score_bound(max_score))

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Disconnected from Redis")


def _score_bound(score: float):
    if score == float("-inf"):
        return "-inf"
    if score == float("inf"):
        return "+inf"
    return score


# =============================================================================
# In-process
# =============================================================================

class MemoryBackend(KeyValueBackend):
    """Single-process backend with Redis semantics for the operations above."""

    def __init__(self):
        self._strings: Dict[str, str] = {}
        self._expiry: Dict[str, float] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}

    def _expire_if_due(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and time.time() >= deadline:
            self._strings.pop(key, None)
            self._expiry.pop(key, None)

    def _sorted(self, key: str) -> List[Tuple[str, float]]:
        zset = self._zsets.get(key, {})
        return sorted(zset.items(), key=lambda item: (item[1], item[0]))

    async def get(self, key: str) -> Optional[str]:
        self._expire_if_due(key)
        return self._strings.get(key)

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        return [await self.get(key) for key in keys]

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> None:
        self._strings[key] = value
        if ex:
            self._expiry[key] = time.time() + ex
        else:
            self._expiry.pop(key, None)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            for store in (self._strings, self._sets, self._zsets):
                if key in store:
                    del store[key]
                    removed += 1
            self._expiry.pop(key, None)
        return removed

    async def exists(self, key: str) -> bool:
        self._expire_if_due(key)
        return key in self._strings or key in self._sets or key in self._zsets

    async def compare_and_set(self, key: str, expected: Optional[str], value: str) -> bool:
        if await self.get(key) != expected:
            return False
        self._strings[key] = value
        return True

    async def incr(self, key: str) -> int:
        value = int(await self.get(key) or 0) + 1
        self._strings[key] = str(value)
        return value

    async def sadd(self, key: str, *members: str) -> int:
        members_set = self._sets.setdefault(key, set())
        added = len(set(members) - members_set)
        members_set.update(members)
        return added

    async def srem(self, key: str, *members: str) -> int:
        members_set = self._sets.get(key)
        if not members_set:
            return 0
        removed = len(members_set & set(members))
        members_set.difference_update(members)
        if not members_set:
            del self._sets[key]
        return removed

    async def smembers(self, key: str) -> Set[str]:
        return set(self._sets.get(key, set()))

    async def scard(self, key: str) -> int:
        return len(self._sets.get(key, set()))

    async def zadd(self, key: str, member: str, score: float) -> None:
        self._zsets.setdefault(key, {})[member] = score

    async def zrem(self, key: str, *members: str) -> int:
        zset = self._zsets.get(key)
        if not zset:
            return 0
        removed = 0
        for member in members:
            if zset.pop(member, None) is not None:
                removed += 1
        if not zset:
            del self._zsets[key]
        return removed

    async def zcard(self, key: str) -> int:
        return len(self._zsets.get(key, {}))

    async def zrange(self, key: str, start: int, stop: int, desc: bool = False) -> List[str]:
        members = [member for member, _ in self._sorted(key)]
        if desc:
            members.reverse()
        n = len(members)
        if start < 0:
            start = max(n + start, 0)
        if stop < 0:
            stop = n + stop
        if stop < start:
            return []
        return members[start:stop + 1]

    async def zrangebyscore(
        self,
        key: str,
        min_score: float = float("-inf"),
        max_score: float = float("inf"),
        desc: bool = False,
        offset: int = 0,
        count: Optional[int] = None,
    ) -> List[str]:
        members = [m for m, score in self._sorted(key) if min_score <= score <= max_score]
        if desc:
            members.reverse()
        end = None if count is None else offset + count
        return members[offset:end]

    async def zcount(self, key: str, min_score: float, max_score: float) -> int:
        return len([m for m, score in self._sorted(key) if min_score <= score <= max_score])

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        zset = self._zsets.get(key, {})
        doomed = [m for m, score in zset.items() if min_score <= score <= max_score]
        return await self.zrem(key, *doomed)
