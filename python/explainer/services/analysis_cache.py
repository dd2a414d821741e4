"""Result cache for vision analyses.

The cache is an optimization only. Every backend may raise; the vision
analyzer treats any cache exception as a miss (on read) or a no-op (on write).

Backends:
- RedisAnalysisCache: JSON payloads under string keys with a TTL (SETEX)
- InMemoryAnalysisCache: process-local dict with expiry, used when Redis is
  not configured and in tests
"""

import json
import time
from typing import Any, Protocol

DEFAULT_TTL_S = 7 * 24 * 3600


class AnalysisCache(Protocol):
    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, value: dict[str, Any], ttl_s: int) -> None: ...


class RedisAnalysisCache:
    """Analysis cache backed by a (sync) redis client."""

    def __init__(self, redis_client):
        self._redis = redis_client

    def get(self, key: str) -> dict[str, Any] | None:
        raw = self._redis.get(key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        value = json.loads(raw)
        return value if isinstance(value, dict) else None

    def set(self, key: str, value: dict[str, Any], ttl_s: int) -> None:
        self._redis.setex(key, ttl_s, json.dumps(value, separators=(",", ":")))


class InMemoryAnalysisCache:
    """Process-local cache with per-entry expiry."""

    def __init__(self, clock=time.monotonic):
        self._entries: dict[str, tuple[float, str]] = {}
        self._clock = clock

    def get(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return json.loads(raw)

    def set(self, key: str, value: dict[str, Any], ttl_s: int) -> None:
        self._entries[key] = (self._clock() + ttl_s, json.dumps(value))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
