from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Protocol

import redis

from paginate.schemas.pagination import PaginationRequest

_LOG = logging.getLogger("paginate.cache")


class CacheAdapter(Protocol):
    def get(self, key: str) -> str:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def is_valid(self, key: str) -> bool:
        ...

    def clear(self, key: str) -> None:
        ...

    def clear_prefix(self, prefix: str) -> None:
        ...

    def clear_all(self) -> None:
        ...


class CacheMiss(KeyError):
    pass


class NoOpCacheAdapter:
    def get(self, key: str) -> str:
        raise CacheMiss(key)

    def set(self, key: str, value: str) -> None:
        return None

    def is_valid(self, key: str) -> bool:
        return False

    def clear(self, key: str) -> None:
        return None

    def clear_prefix(self, prefix: str) -> None:
        return None

    def clear_all(self) -> None:
        return None


class InMemoryCacheAdapter:
    def __init__(self, ttl_seconds: int | None = None):
        self.ttl_seconds = ttl_seconds
        self._data: dict[str, tuple[str, datetime | None]] = {}
        self._lock = Lock()

    def _alive(self, key: str, now: datetime) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        expires_at = entry[1]
        if expires_at is not None and expires_at <= now:
            del self._data[key]
            return False
        return True

    def get(self, key: str) -> str:
        now = datetime.now(timezone.utc)
        with self._lock:
            if not self._alive(key, now):
                raise CacheMiss(key)
            return self._data[key][0]

    def set(self, key: str, value: str) -> None:
        expires_at = None
        if self.ttl_seconds:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=max(int(self.ttl_seconds), 1))
        with self._lock:
            self._data[key] = (value, expires_at)

    def is_valid(self, key: str) -> bool:
        now = datetime.now(timezone.utc)
        with self._lock:
            return self._alive(key, now)

    def clear(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._data if k.startswith(prefix)]:
                del self._data[key]

    def clear_all(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisCacheAdapter:
    def __init__(self, client: redis.Redis, ttl_seconds: int | None = None):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def get(self, key: str) -> str:
        value = self.client.get(key)
        if value is None:
            raise CacheMiss(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    def set(self, key: str, value: str) -> None:
        ttl = int(max(self.ttl_seconds, 1)) if self.ttl_seconds else None
        self.client.set(key, value, ex=ttl)

    def is_valid(self, key: str) -> bool:
        return bool(self.client.exists(key))

    def clear(self, key: str) -> None:
        self.client.delete(key)

    def clear_prefix(self, prefix: str) -> None:
        keys = list(self.client.scan_iter(match=f"{_escape_pattern(prefix)}*"))
        if keys:
            self.client.delete(*keys)

    def clear_all(self) -> None:
        self.client.flushdb()


def _escape_pattern(prefix: str) -> str:
    for char in ("\\", "*", "?", "[", "]"):
        prefix = prefix.replace(char, "\\" + char)
    return prefix


def build_cache_adapter(url: str, *, ttl_seconds: int | None = None) -> CacheAdapter:
    """Connect to Redis at ``url``; fall back to a process-local cache."""
    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=0.4,
            socket_connect_timeout=0.4,
        )
        client.ping()
        return RedisCacheAdapter(client, ttl_seconds=ttl_seconds)
    except Exception:
        _LOG.warning("Redis cache unavailable; fallback to in-memory cache")
        return InMemoryCacheAdapter(ttl_seconds=ttl_seconds)


def build_cache_key(prefix: str, request: PaginationRequest, fields: Iterable[str] = ()) -> str:
    """Deterministic cache key for a pagination request.

    Two requests with the same page, size, sorts, literal filter string and
    fields map to the same key.
    """
    signature = {
        "page": request.page,
        "size": request.size,
        "sorts": [[sort.column, sort.direction] for sort in request.sorts],
        "filters": request.raw_filters,
        "fields": list(fields),
    }
    payload = json.dumps(signature, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"
