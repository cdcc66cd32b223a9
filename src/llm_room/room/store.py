"""Shared key-value store used for all cross-instance coordination.

Every request handler may run in a different worker process, so the only
shared state is what lives in the store. The core relies on a handful of
atomic primitives: set-if-absent with TTL, compare-and-delete, hash
set-if-absent, hash increment and list append.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Callable

import redis

from ..config import StoreConfig

_COMPARE_AND_DELETE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""

# Checks every field first so a non-integer value rejects the whole batch.
_HINCRBY_MANY_SCRIPT = """
local n = #ARGV / 2
for i = 1, n do
  local current = redis.call('HGET', KEYS[1], ARGV[2 * i - 1])
  if current and not string.match(current, '^-?%d+$') then
    return redis.error_reply('hash value is not an integer: ' .. ARGV[2 * i - 1])
  end
end
local out = {}
for i = 1, n do
  out[i] = redis.call('HINCRBY', KEYS[1], ARGV[2 * i - 1], ARGV[2 * i])
end
return out
"""


def _ttl_ms(ttl_seconds: float | None) -> int | None:
    if ttl_seconds is None:
        return None
    return max(1, int(ttl_seconds * 1000))


class KeyValueStore:
    """Interface shared by the redis and in-memory backends."""

    backend_name = "abstract"

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        raise NotImplementedError

    def set_if_absent(self, key: str, value: str, ttl_seconds: float | None = None) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def delete_if_equals(self, key: str, value: str) -> bool:
        raise NotImplementedError

    def rpush(self, key: str, value: str) -> int:
        raise NotImplementedError

    def lrange(self, key: str, start: int, end: int) -> list[str]:
        raise NotImplementedError

    def hget(self, key: str, field: str) -> str | None:
        raise NotImplementedError

    def hsetnx(self, key: str, field: str, value: str) -> bool:
        raise NotImplementedError

    def hincrby(self, key: str, field: str, delta: int) -> int:
        raise NotImplementedError

    def hincrby_many(self, key: str, deltas: dict[str, int]) -> dict[str, int]:
        raise NotImplementedError

    def publish(self, channel: str, message: str) -> int:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        return None


class RedisStore(KeyValueStore):
    backend_name = "redis"

    def __init__(self, url: str, *, client: Any | None = None) -> None:
        self.url = url
        self._client = client if client is not None else redis.Redis.from_url(url, decode_responses=True)
        self._compare_and_delete = self._client.register_script(_COMPARE_AND_DELETE_SCRIPT)
        self._hincrby_many = self._client.register_script(_HINCRBY_MANY_SCRIPT)

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        self._client.set(key, value, px=_ttl_ms(ttl_seconds))

    def set_if_absent(self, key: str, value: str, ttl_seconds: float | None = None) -> bool:
        return bool(self._client.set(key, value, nx=True, px=_ttl_ms(ttl_seconds)))

    def delete(self, key: str) -> bool:
        return bool(self._client.delete(key))

    def delete_if_equals(self, key: str, value: str) -> bool:
        return bool(self._compare_and_delete(keys=[key], args=[value]))

    def rpush(self, key: str, value: str) -> int:
        return int(self._client.rpush(key, value))

    def lrange(self, key: str, start: int, end: int) -> list[str]:
        return list(self._client.lrange(key, start, end))

    def hget(self, key: str, field: str) -> str | None:
        return self._client.hget(key, field)

    def hsetnx(self, key: str, field: str, value: str) -> bool:
        return bool(self._client.hsetnx(key, field, value))

    def hincrby(self, key: str, field: str, delta: int) -> int:
        return int(self._client.hincrby(key, field, delta))

    def hincrby_many(self, key: str, deltas: dict[str, int]) -> dict[str, int]:
        fields = list(deltas)
        args: list[Any] = []
        for field in fields:
            args.extend([field, int(deltas[field])])
        try:
            results = self._hincrby_many(keys=[key], args=args)
        except redis.ResponseError as exc:
            raise ValueError(f"{exc}: {key}") from exc
        return {field: int(value) for field, value in zip(fields, results)}

    def publish(self, channel: str, message: str) -> int:
        return int(self._client.publish(channel, message))

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        self._client.close()


def _redis_slice(items: list[str], start: int, end: int) -> list[str]:
    n = len(items)
    if start < 0:
        start = max(n + start, 0)
    if end < 0:
        end = n + end
    else:
        end = min(end, n - 1)
    if start > end:
        return []
    return items[start : end + 1]


class MemoryStore(KeyValueStore):
    """Single-process backend with the same atomicity as the redis one."""

    backend_name = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time, published_limit: int = 1000) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._strings: dict[str, tuple[str, float | None]] = {}
        self._lists: dict[str, list[str]] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self.published: deque[tuple[str, str]] = deque(maxlen=published_limit)

    def _live_value(self, key: str) -> str | None:
        entry = self._strings.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._strings[key]
            return None
        return value

    def _expiry(self, ttl_seconds: float | None) -> float | None:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._live_value(key)

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        with self._lock:
            self._strings[key] = (value, self._expiry(ttl_seconds))

    def set_if_absent(self, key: str, value: str, ttl_seconds: float | None = None) -> bool:
        with self._lock:
            if self._live_value(key) is not None:
                return False
            self._strings[key] = (value, self._expiry(ttl_seconds))
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._live_value(key) is not None
            self._strings.pop(key, None)
            existed = self._lists.pop(key, None) is not None or existed
            existed = self._hashes.pop(key, None) is not None or existed
            return existed

    def delete_if_equals(self, key: str, value: str) -> bool:
        with self._lock:
            if self._live_value(key) != value:
                return False
            del self._strings[key]
            return True

    def rpush(self, key: str, value: str) -> int:
        with self._lock:
            items = self._lists.setdefault(key, [])
            items.append(value)
            return len(items)

    def lrange(self, key: str, start: int, end: int) -> list[str]:
        with self._lock:
            return _redis_slice(list(self._lists.get(key, [])), start, end)

    def hget(self, key: str, field: str) -> str | None:
        with self._lock:
            return self._hashes.get(key, {}).get(field)

    def hsetnx(self, key: str, field: str, value: str) -> bool:
        with self._lock:
            bucket = self._hashes.setdefault(key, {})
            if field in bucket:
                return False
            bucket[field] = value
            return True

    def _hincrby(self, key: str, field: str, delta: int) -> int:
        bucket = self._hashes.setdefault(key, {})
        current = bucket.get(field, "0")
        try:
            updated = int(current) + int(delta)
        except ValueError as exc:
            raise ValueError(f"hash value is not an integer: {key}/{field}") from exc
        bucket[field] = str(updated)
        return updated

    def hincrby(self, key: str, field: str, delta: int) -> int:
        with self._lock:
            return self._hincrby(key, field, delta)

    def hincrby_many(self, key: str, deltas: dict[str, int]) -> dict[str, int]:
        with self._lock:
            bucket = self._hashes.setdefault(key, {})
            for field in deltas:
                try:
                    int(bucket.get(field, "0"))
                except ValueError as exc:
                    raise ValueError(f"hash value is not an integer: {key}/{field}") from exc
            return {field: self._hincrby(key, field, delta) for field, delta in deltas.items()}

    def publish(self, channel: str, message: str) -> int:
        with self._lock:
            self.published.append((channel, message))
        return 0

    def ping(self) -> bool:
        return True


_store: KeyValueStore | None = None
_store_lock = threading.Lock()


def create_store(config: StoreConfig) -> KeyValueStore:
    if config.backend == "memory":
        return MemoryStore()
    return RedisStore(config.url)


def init_store(config: StoreConfig) -> KeyValueStore:
    """Create the process-wide store client once; later calls reuse it."""
    global _store
    with _store_lock:
        if _store is None:
            _store = create_store(config)
        return _store


def close_store() -> None:
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
            _store = None
