# pensive/cache.py
"""
Short-lived key/value cache in front of the LLM and a few expensive reads.

Two backends with the same contract:
  - MemoryCache: per-process expiring dict (best-effort across instances)
  - RedisCache:  shared cache via redis-py

Entries never outlive their TTL from the caller's point of view: an expired
entry reads as absent even if it has not been evicted yet. The cache is never
authoritative, so backend failures degrade to a miss.
"""
from __future__ import annotations

import base64
import json
import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import redis

from .config import CACHE_BACKEND, REDIS_URL
from .logging_setup import get_logger

logger = get_logger("pensive.cache")

ANALYSIS_TTL = 24 * 60 * 60
CONCEPT_MAP_TTL = 10 * 60
DIGEST_LIST_TTL = 5 * 60


class CacheKeys:
    @staticmethod
    def analysis(content_hash: str) -> str:
        return f"analysis:{content_hash}"

    @staticmethod
    def concept_map(user_id: str, abstraction_level: int) -> str:
        return f"concept:map:{user_id}:{abstraction_level}"

    @staticmethod
    def concept_maps(user_id: str) -> list:
        return [CacheKeys.concept_map(user_id, level) for level in range(0, 101)]

    @staticmethod
    def digests(user_id: str) -> str:
        return f"digests:{user_id}"

    @staticmethod
    def rss_feed(feed_url: str) -> str:
        return "rss:feed:" + base64.urlsafe_b64encode(feed_url.encode("utf-8")).decode("ascii")

    @staticmethod
    def podcast_show(url: str) -> str:
        return "podcast:show:" + base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii")


class Cache:
    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.delete(key)


class MemoryCache(Cache):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return json.loads(value)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            self.delete(key)
            return
        # Stored serialized so callers get the same detached copies RedisCache returns
        encoded = json.dumps(value, default=str)
        with self._lock:
            self._data[key] = (encoded, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._data.items() if now >= exp]
            for k in expired:
                del self._data[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class RedisCache(Cache):
    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            logger.warning("CACHE_GET_FAILED", extra={"key": key, "error": type(e).__name__})
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("CACHE_VALUE_CORRUPT", extra={"key": key})
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            self.delete(key)
            return
        try:
            self._client.setex(key, ttl_seconds, json.dumps(value, default=str))
        except redis.RedisError as e:
            logger.warning("CACHE_SET_FAILED", extra={"key": key, "error": type(e).__name__})

    def delete(self, key: str) -> None:
        self.delete_many([key])

    def delete_many(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        try:
            self._client.delete(*keys)
        except redis.RedisError as e:
            logger.warning("CACHE_DELETE_FAILED", extra={"keys": len(keys), "error": type(e).__name__})


def build_cache(backend: Optional[str] = None) -> Cache:
    backend = (backend or CACHE_BACKEND).lower()
    if backend == "redis":
        logger.info("Cache backend: redis")
        return RedisCache.from_url(REDIS_URL)
    if backend != "memory":
        logger.warning(f"Unknown CACHE_BACKEND={backend!r}; using in-memory cache")
    return MemoryCache()
