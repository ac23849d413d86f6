"""Read-through cache for analytics results.

Keys follow ``analytics:<metric>:<scope>:<id>[:<params>]`` so a group's or a
user's entries can be dropped together with ``forget_scope`` without touching
anyone else's. Values must be JSON-serializable; both backends store them as
JSON so a cached value reads back the same regardless of backend.
"""

import fnmatch
import json
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Protocol

import redis
import structlog

logger = structlog.get_logger()

KEY_PREFIX = "analytics"


def cache_key(metric: str, scope: str, scope_id: str, *params: Any) -> str:
    """Build ``analytics:<metric>:<scope>:<id>[:<params>]``.

    ``None`` params are rendered as ``all`` so an unbounded date range still
    yields a stable key.
    """
    parts = [KEY_PREFIX, metric, scope, str(scope_id)]
    parts.extend("all" if p is None else str(p) for p in params)
    return ":".join(parts)


def scope_patterns(scope: str, scope_id: str) -> list[str]:
    return [
        f"{KEY_PREFIX}:*:{scope}:{scope_id}",
        f"{KEY_PREFIX}:*:{scope}:{scope_id}:*",
    ]


class AnalyticsCache(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: int) -> None: ...

    def remember(self, key: str, ttl: int, compute: Callable[[], Any]) -> Any: ...

    def forget(self, key: str) -> None: ...

    def forget_pattern(self, pattern: str) -> int: ...

    def forget_scope(self, scope: str, scope_id: str) -> int: ...


class _BaseCache(ABC):
    @abstractmethod
    def get(self, key: str) -> Any | None: ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int) -> None: ...

    @abstractmethod
    def forget(self, key: str) -> None: ...

    @abstractmethod
    def forget_pattern(self, pattern: str) -> int: ...

    def remember(self, key: str, ttl: int, compute: Callable[[], Any]) -> Any:
        """Return the cached value for ``key`` or compute, store and return it."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = compute()
        self.set(key, value, ttl)
        # Hand back the stored form so hits and misses look identical.
        return json.loads(json.dumps(value))

    def forget_scope(self, scope: str, scope_id: str) -> int:
        removed = sum(self.forget_pattern(p) for p in scope_patterns(scope, scope_id))
        logger.debug("analytics_cache_scope_cleared", scope=scope, scope_id=scope_id, removed=removed)
        return removed


class InMemoryCache(_BaseCache):
    """Process-local TTL cache."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, str]] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl: int) -> None:
        payload = json.dumps(value)
        with self._lock:
            self._entries[key] = (self._clock() + ttl, payload)

    def forget(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def forget_pattern(self, pattern: str) -> int:
        with self._lock:
            matched = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for key in matched:
                del self._entries[key]
        return len(matched)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache(_BaseCache):
    """Cache shared across workers through Redis (``SETEX`` + ``SCAN``)."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url, encoding="utf-8", decode_responses=True))

    def get(self, key: str) -> Any | None:
        payload = self._client.get(key)
        if payload is None:
            return None
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl: int) -> None:
        self._client.setex(key, ttl, json.dumps(value))

    def forget(self, key: str) -> None:
        self._client.delete(key)

    def forget_pattern(self, pattern: str) -> int:
        keys = list(self._client.scan_iter(match=pattern, count=500))
        if not keys:
            return 0
        return int(self._client.delete(*keys))


class NullCache(_BaseCache):
    """Never stores anything; every ``remember`` recomputes."""

    def get(self, key: str) -> Any | None:
        return None

    def set(self, key: str, value: Any, ttl: int) -> None:
        return None

    def forget(self, key: str) -> None:
        return None

    def forget_pattern(self, pattern: str) -> int:
        return 0


def get_cache(backend: str, redis_url: str | None = None) -> AnalyticsCache:
    """Cache for a configured backend name: ``memory``, ``redis`` or ``none``."""
    if backend == "memory":
        return InMemoryCache()
    if backend == "redis":
        if not redis_url:
            raise ValueError("redis_url is required for the redis cache backend")
        return RedisCache.from_url(redis_url)
    if backend == "none":
        return NullCache()
    raise ValueError(f"Unknown analytics cache backend '{backend}'")
