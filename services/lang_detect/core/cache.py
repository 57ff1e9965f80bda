# services/lang_detect/core/cache.py
"""
Result cache for the detection cascade.

Two backing stores are provided: an in-process TTL store (default) and Redis.
`ResultCache` sits in front of either one and turns every storage failure into
a cache miss (reads) or a logged no-op (writes).
"""
from __future__ import annotations
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import redis
from cachetools import TLRUCache

from .config import CascadeConfig
from .types import CacheUnavailable, DetectionResult

logger = logging.getLogger("lang_detect.cache")


class MemoryBackend:
    """Thread-safe in-process store with per-entry TTL and a capacity bound."""

    def __init__(self, max_entries: int = 10000, timer: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._store: TLRUCache = TLRUCache(
            maxsize=max_entries,
            ttu=lambda _key, value, now: now + value[1],
            timer=timer,
        )

    def get(self, key: str) -> Optional[DetectionResult]:
        with self._lock:
            entry = self._store.get(key)
        return entry[0] if entry is not None else None

    def set(self, key: str, value: DetectionResult, ttl_seconds: int) -> None:
        with self._lock:
            self._store[key] = (value, ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            self._store.expire()
            return len(self._store)


class RedisBackend:
    """Redis store. Values are JSON documents written with SET ... EX ttl."""

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str, op_timeout: float = 0.05) -> "RedisBackend":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=op_timeout,
            socket_connect_timeout=op_timeout,
        )
        return cls(client)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            raise CacheUnavailable(str(e)) from e

    def get(self, key: str) -> Optional[DetectionResult]:
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            raise CacheUnavailable(str(e)) from e
        if not raw:
            return None
        try:
            return DetectionResult.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("[lang_detect.cache] dropping unreadable entry key=%s", key)
            return None

    def set(self, key: str, value: DetectionResult, ttl_seconds: int) -> None:
        try:
            self._client.set(key, json.dumps(value.to_dict()), ex=ttl_seconds)
        except redis.RedisError as e:
            raise CacheUnavailable(str(e)) from e

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as e:
            raise CacheUnavailable(str(e)) from e

    def clear(self) -> None:
        # only our namespace; never FLUSHDB a shared instance
        try:
            for k in self._client.scan_iter(match="lang-detect:*"):
                self._client.delete(k)
        except redis.RedisError as e:
            raise CacheUnavailable(str(e)) from e


class ResultCache:
    """
    key -> DetectionResult with TTL.

    get() returns None on any backend failure; set() logs and carries on.
    """

    def __init__(self, backend: Any = None, default_ttl: int = 24 * 3600):
        self.backend = backend if backend is not None else MemoryBackend()
        self.default_ttl = default_ttl
        self._lock = threading.Lock()
        self._stats: Dict[str, int] = {"hits": 0, "misses": 0, "writes": 0, "errors": 0}

    def _bump(self, name: str) -> None:
        with self._lock:
            self._stats[name] += 1

    def get(self, key: str) -> Optional[DetectionResult]:
        try:
            value = self.backend.get(key)
        except Exception as e:
            self._bump("errors")
            logger.warning("[lang_detect.cache] get failed key=%s (treating as miss): %s", key, e)
            return None
        self._bump("hits" if value is not None else "misses")
        return value

    def set(self, key: str, value: DetectionResult, ttl_seconds: Optional[int] = None) -> bool:
        ttl = int(ttl_seconds if ttl_seconds is not None else self.default_ttl)
        if ttl <= 0:
            return False
        try:
            self.backend.set(key, value, ttl)
        except Exception:
            self._bump("errors")
            logger.exception("[lang_detect.cache] set failed key=%s", key)
            return False
        self._bump("writes")
        logger.debug("[lang_detect.cache] cached key=%s lang=%s ttl=%s", key, value.lang, ttl)
        return True

    def delete(self, key: str) -> bool:
        try:
            self.backend.delete(key)
            return True
        except Exception:
            self._bump("errors")
            logger.exception("[lang_detect.cache] delete failed key=%s", key)
            return False

    def clear(self) -> None:
        try:
            self.backend.clear()
        except Exception:
            self._bump("errors")
            logger.exception("[lang_detect.cache] clear failed")

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)


def build_result_cache(config: CascadeConfig) -> ResultCache:
    backend: Any = None
    if config.cache_backend == "redis":
        try:
            candidate = RedisBackend.from_url(config.redis_url, op_timeout=config.cache_op_timeout)
            candidate.ping()
            backend = candidate
            logger.info("[lang_detect.cache] using redis backend at %s", config.redis_url)
        except CacheUnavailable as e:
            logger.warning("[lang_detect.cache] redis unavailable (%s); using in-memory cache", e)
    elif config.cache_backend != "memory":
        logger.warning("[lang_detect.cache] unknown backend %r; using in-memory cache", config.cache_backend)
    if backend is None:
        backend = MemoryBackend(max_entries=config.cache_max_entries)
    return ResultCache(backend, default_ttl=config.cache_ttl_seconds)
