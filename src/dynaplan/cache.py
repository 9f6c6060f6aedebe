# src/dynaplan/cache.py
"""
Process-wide caches with per-key fill coordination, plus the scan-result cache
"""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

import redis

from .json_safe import json_safe
from .models import Page, ScanCacheEntry

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One lock per key, created on demand"""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class MemoryCacheBackend:
    """In-process storage; values are replaced wholesale, never mutated"""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class RedisCacheBackend:
    """Redis-based storage shared between processes"""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: str = "dynaplan:",
        encode: Callable[[Any], Dict[str, Any]] = lambda v: v,
        decode: Callable[[Dict[str, Any]], Any] = lambda v: v,
        client: Optional[Any] = None,
    ):
        self.prefix = prefix
        self.encode = encode
        self.decode = decode
        self._client = client or redis.from_url(redis_url or "redis://localhost:6379/0")

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            data = self._client.get(self._make_key(key))
        except redis.RedisError as e:
            logger.warning(f"Redis cache read failed for {key}, treating as miss: {e}")
            return None
        if not data:
            return None
        return self.decode(json.loads(data))

    def set(self, key: str, value: Any) -> None:
        try:
            self._client.set(self._make_key(key), json.dumps(self.encode(value), default=json_safe))
        except redis.RedisError as e:
            logger.warning(f"Redis cache write failed for {key}: {e}")

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._make_key(key))
        except redis.RedisError as e:
            logger.warning(f"Redis cache delete failed for {key}: {e}")

    def clear(self) -> None:
        try:
            keys = self._client.keys(f"{self.prefix}*")
            if keys:
                self._client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Redis cache clear failed for {self.prefix}*: {e}")


class KeyedCache:
    """
    get / get_or_compute / refresh / invalidate over a backend.

    Reads take no lock. Filling, refreshing and invalidating one key are
    serialized on that key's lock, so a second concurrent miss waits for the
    first fill and then returns its value.
    """

    def __init__(self, backend=None):
        self.backend = backend or MemoryCacheBackend()
        self._locks = KeyedLocks()

    def get(self, key: str) -> Optional[Any]:
        return self.backend.get(key)

    def get_or_compute(self, key: str, compute: Callable[[], Any]) -> Any:
        value = self.backend.get(key)
        if value is not None:
            return value
        with self._locks.lock_for(key):
            value = self.backend.get(key)
            if value is None:
                value = compute()
                self.backend.set(key, value)
            return value

    def refresh(self, key: str, compute: Callable[[], Any]) -> Any:
        with self._locks.lock_for(key):
            value = compute()
            self.backend.set(key, value)
            return value

    def put(self, key: str, value: Any) -> None:
        with self._locks.lock_for(key):
            self.backend.set(key, value)

    def invalidate(self, key: str) -> None:
        with self._locks.lock_for(key):
            self.backend.delete(key)


def _encode_entry(entry: ScanCacheEntry) -> Dict[str, Any]:
    return {
        "table_name": entry.table_name,
        "page": entry.page.to_dict(),
        "captured_at": entry.captured_at.isoformat(),
    }


def _decode_entry(data: Dict[str, Any]) -> ScanCacheEntry:
    return ScanCacheEntry(
        table_name=data["table_name"],
        page=Page.from_dict(data["page"]),
        captured_at=datetime.fromisoformat(data["captured_at"]),
    )


class ScanResultCache:
    """
    First scan page per configured table.

    Only the single page returned by `scan_fn` is kept, never a fully paged
    result. Tables outside `cached_tables` always bypass the cache.
    """

    def __init__(self, cached_tables: Iterable[str] = (), backend=None):
        self.cached_tables = frozenset(cached_tables)
        self._cache = KeyedCache(backend)

    @classmethod
    def from_settings(cls, settings) -> ScanResultCache:
        backend = None
        if settings.redis_cache_url:
            backend = RedisCacheBackend(
                redis_url=settings.redis_cache_url,
                prefix="dynaplan:scan:",
                encode=_encode_entry,
                decode=_decode_entry,
            )
        return cls(settings.cached_tables, backend)

    def is_cached_table(self, table: str) -> bool:
        return table in self.cached_tables

    def entry(self, table: str) -> Optional[ScanCacheEntry]:
        return self._cache.get(table)

    def get_or_scan(self, table: str, scan_fn: Callable[[], Page], override: bool = False) -> Page:
        if not self.is_cached_table(table):
            return scan_fn()

        def _fill() -> ScanCacheEntry:
            logger.info(f"Scan cache fill for table {table}")
            return ScanCacheEntry(table_name=table, page=scan_fn())

        if override:
            entry = self._cache.refresh(table, _fill)
        else:
            entry = self._cache.get_or_compute(table, _fill)
        # callers get their own item dicts so the cached page stays intact
        page = entry.page
        return Page([dict(item) for item in page.items], page.count, page.scanned_count, page.last_key)

    def invalidate(self, table: str) -> None:
        logger.info(f"Scan cache invalidated for table {table}")
        self._cache.invalidate(table)
