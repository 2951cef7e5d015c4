"""Key-value backends: Redis (durable) and in-process memory (fallback).

Both expose the same primitive operations. Values are JSON-shaped data
(dicts, lists, strings, numbers); lists are ordered sequences addressed by
key, newest element at index 0 when written with ``lpush``.
"""

from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

logger = logging.getLogger("scibrain.storage")


class KeyValueBackend(ABC):
    """Primitive operations the storage facade is built on."""

    name: str = "base"

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the stored value or None."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, *, ex: Optional[int] = None, nx: bool = False) -> bool:
        """Store value. ``ex`` is an expiry hint in seconds; with ``nx`` only
        writes when the key is absent. Returns False if ``nx`` blocked the write."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment an integer counter, starting from 0."""
        ...

    @abstractmethod
    async def lpush(self, key: str, value: Any) -> int:
        """Insert value at the head of the list. Returns the new length."""
        ...

    @abstractmethod
    async def lrem(self, key: str, value: Any) -> int:
        """Remove every element equal to value. Returns the number removed."""
        ...

    @abstractmethod
    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[Any]:
        """Elements start..stop inclusive (negative indexes count from the end)."""
        ...

    @abstractmethod
    async def llen(self, key: str) -> int:
        ...

    async def close(self) -> None:
        """Release connections. No-op by default."""
        return None


def _slice_bounds(length: int, start: int, stop: int) -> tuple[int, int]:
    """Translate inclusive Redis-style indexes into a Python slice."""
    if start < 0:
        start = max(length + start, 0)
    if stop < 0:
        stop = length + stop
    return start, max(stop + 1, 0)


class MemoryBackend(KeyValueBackend):
    """
    Process-local store. State lives on the instance and is lost on restart.

    Values are deep-copied on write and on read so callers never hold a
    reference into the store. Expiry hints are accepted and ignored: any
    expiry semantics must be enforced by the caller.
    """

    name = "in-memory"

    def __init__(self):
        self._values: Dict[str, Any] = {}
        self._lists: Dict[str, List[Any]] = {}
        self._lock = Lock()

    async def get(self, key: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._values.get(key))

    async def set(self, key: str, value: Any, *, ex: Optional[int] = None, nx: bool = False) -> bool:
        with self._lock:
            if nx and key in self._values:
                return False
            self._values[key] = copy.deepcopy(value)
            return True

    async def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)
            self._lists.pop(key, None)

    async def incr(self, key: str) -> int:
        with self._lock:
            current = int(self._values.get(key) or 0) + 1
            self._values[key] = current
            return current

    async def lpush(self, key: str, value: Any) -> int:
        with self._lock:
            items = self._lists.setdefault(key, [])
            items.insert(0, copy.deepcopy(value))
            return len(items)

    async def lrem(self, key: str, value: Any) -> int:
        with self._lock:
            items = self._lists.get(key, [])
            kept = [item for item in items if item != value]
            removed = len(items) - len(kept)
            if kept:
                self._lists[key] = kept
            else:
                self._lists.pop(key, None)
            return removed

    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[Any]:
        with self._lock:
            items = self._lists.get(key, [])
            lo, hi = _slice_bounds(len(items), start, stop)
            return copy.deepcopy(items[lo:hi])

    async def llen(self, key: str) -> int:
        with self._lock:
            return len(self._lists.get(key, []))

    def clear(self) -> None:
        """Drop everything (for tests)."""
        with self._lock:
            self._values.clear()
            self._lists.clear()


class RedisBackend(KeyValueBackend):
    """
    Redis-backed store. Values and list elements are JSON-encoded; counters
    are native Redis integers so INCR stays atomic on the server.

    Errors from the client (``redis.exceptions.RedisError``) propagate
    unchanged; there are no retries.
    """

    name = "redis"

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout_s: Optional[float] = None) -> "RedisBackend":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=socket_timeout_s,
        )
        return cls(client)

    @staticmethod
    def _dumps(value: Any) -> str:
        return json.dumps(value, ensure_ascii=False, sort_keys=True)

    @staticmethod
    def _loads(raw: Any) -> Any:
        if raw is None:
            return None
        return json.loads(raw)

    async def get(self, key: str) -> Any:
        return self._loads(await self.client.get(key))

    async def set(self, key: str, value: Any, *, ex: Optional[int] = None, nx: bool = False) -> bool:
        result = await self.client.set(key, self._dumps(value), ex=ex, nx=nx)
        return bool(result)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def incr(self, key: str) -> int:
        return int(await self.client.incr(key))

    async def lpush(self, key: str, value: Any) -> int:
        return int(await self.client.lpush(key, self._dumps(value)))

    async def lrem(self, key: str, value: Any) -> int:
        return int(await self.client.lrem(key, 0, self._dumps(value)))

    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[Any]:
        raw = await self.client.lrange(key, start, stop)
        return [self._loads(item) for item in raw]

    async def llen(self, key: str) -> int:
        return int(await self.client.llen(key))

    async def close(self) -> None:
        await self.client.aclose()


def create_backend(settings) -> KeyValueBackend:
    """Pick the backend once for the process: Redis if configured, else memory."""
    url = getattr(settings, "redis_url", None)
    if url:
        logger.info("Storage backend: redis")
        return RedisBackend.from_url(url, socket_timeout_s=getattr(settings, "redis_socket_timeout_s", None))
    logger.info("Storage backend: in-memory (REDIS_URL not set, data is lost on restart)")
    return MemoryBackend()
