# FILE: medkit/services/cache.py
"""
Read-through cache for drug reads.

Regions and keys:

  medkit:drug_by_id:{owner_id}:{sha256[:32]}
  medkit:drug_statistics:{owner_id}:{sha256[:32]}
  medkit:drug_search:{owner_id}:{sha256[:32]}

The digest covers (owner_id, region, normalized args). The owner id is also
in the plain prefix so one tenant's entries can be dropped without touching
anybody else's.

Reads degrade: a backend error is logged and the loader runs uncached.
Eviction does not: a backend error raises CacheUnavailableError so the
write that triggered it reports failure instead of leaving stale entries.
"""
from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Tuple, Type, TypeVar

import redis
from pydantic import BaseModel

from medkit.core.config import settings
from medkit.core.exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)

KEY_PREFIX = "medkit"

DRUG_BY_ID = "drug_by_id"
DRUG_STATISTICS = "drug_statistics"
DRUG_SEARCH = "drug_search"
DRUG_REGIONS: Tuple[str, ...] = (DRUG_BY_ID, DRUG_STATISTICS, DRUG_SEARCH)

M = TypeVar("M", bound=BaseModel)


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    def delete_prefix(self, prefix: str) -> int:
        ...


# ----------------------------
# Backends
# ----------------------------
class MemoryCacheBackend:
    """
    Process-local store bounded by `max_entries`.

    Expired entries are dropped on read and by a sweep that runs on write at
    most every SWEEP_INTERVAL_SECONDS. When full, the oldest write goes first.
    """

    SWEEP_INTERVAL_SECONDS = 30.0

    def __init__(self, max_entries: int = 10000) -> None:
        self.max_entries = max(1, max_entries)
        self._data: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            hit = self._data.get(key)
            if hit is None:
                return None
            expires_at, value = hit
            if expires_at and expires_at <= time.monotonic():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        now = time.monotonic()
        expires_at = now + ttl_seconds if ttl_seconds > 0 else 0.0
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            self._data.pop(key, None)
            while len(self._data) >= self.max_entries:
                # dicts keep insertion order
                del self._data[next(iter(self._data))]
            self._data[key] = (expires_at, value)

    def _sweep(self, now: float) -> None:
        doomed = [k for k, (exp, _) in self._data.items() if exp and exp <= now]
        for k in doomed:
            del self._data[k]
        self._next_sweep = now + self.SWEEP_INTERVAL_SECONDS

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def keys(self) -> Iterable[str]:
        with self._lock:
            return list(self._data)


class RedisCacheBackend:
    def __init__(self, client) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float) -> "RedisCacheBackend":
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            self.client.set(key, value, ex=ttl_seconds)
        else:
            self.client.set(key, value)

    def delete_prefix(self, prefix: str) -> int:
        removed = 0
        batch = []
        for key in self.client.scan_iter(match=f"{prefix}*", count=500):
            batch.append(key)
            if len(batch) >= 500:
                removed += self.client.delete(*batch)
                batch = []
        if batch:
            removed += self.client.delete(*batch)
        return removed


# ----------------------------
# Keys
# ----------------------------
def region_prefix(region: str, owner_id: Optional[int] = None) -> str:
    if owner_id is None:
        return f"{KEY_PREFIX}:{region}:"
    return f"{KEY_PREFIX}:{region}:{owner_id}:"


def build_cache_key(region: str, owner_id: int, args: Dict[str, Any]) -> str:
    if owner_id is None:
        raise ValueError("cache keys must be scoped to an owner")
    raw = json.dumps([owner_id, region, args],
                     sort_keys=True,
                     default=str,
                     separators=(",", ":"))
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]
    return f"{region_prefix(region, owner_id)}{digest}"


# ----------------------------
# Facade
# ----------------------------
class DrugCache:
    def __init__(self, backend: CacheBackend, ttl_seconds: int = 300) -> None:
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    def get_or_load(
        self,
        region: str,
        owner_id: int,
        args: Dict[str, Any],
        loader: Callable[[], M],
        schema: Type[M],
        store_if: Optional[Callable[[M], bool]] = None,
    ) -> M:
        key = build_cache_key(region, owner_id, args)

        try:
            raw = self.backend.get(key)
        except Exception as e:
            logger.warning("Cache read failed for %s, falling back to store: %s", key, e)
            return loader()

        if raw is not None:
            try:
                return schema.model_validate(json.loads(raw))
            except ValueError as e:
                logger.warning("Discarding unreadable cache entry %s: %s", key, e)

        value = loader()
        if store_if is not None and not store_if(value):
            return value

        try:
            self.backend.set(key, json.dumps(value.model_dump(mode="json")),
                             self.ttl_seconds)
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", key, e)
        return value

    def evict_owner(self, owner_id: int) -> None:
        if owner_id is None:
            raise ValueError("owner_id is required for scoped eviction")
        self._evict([region_prefix(r, owner_id) for r in DRUG_REGIONS])
        logger.debug("Evicted drug cache entries of owner %s", owner_id)

    def evict_all(self) -> None:
        self._evict([region_prefix(r) for r in DRUG_REGIONS])
        logger.debug("Evicted all drug cache entries")

    def _evict(self, prefixes: Iterable[str]) -> None:
        for prefix in prefixes:
            try:
                self.backend.delete_prefix(prefix)
            except Exception as e:
                logger.error("Cache eviction failed for %s: %s", prefix, e)
                raise CacheUnavailableError(
                    "Cache eviction failed; the change was not confirmed")


_drug_cache: Optional[DrugCache] = None
_drug_cache_lock = threading.Lock()


def build_drug_cache() -> DrugCache:
    if settings.CACHE_BACKEND == "redis":
        backend = RedisCacheBackend.from_url(
            settings.REDIS_URL, settings.CACHE_SOCKET_TIMEOUT_SECONDS)
        logger.info("Drug cache: redis (%s)", settings.REDIS_URL)
    else:
        backend = MemoryCacheBackend(max_entries=settings.CACHE_MAX_ENTRIES)
        logger.info("Drug cache: in-process memory")
    return DrugCache(backend, ttl_seconds=settings.CACHE_TTL_SECONDS)


def get_drug_cache() -> DrugCache:
    global _drug_cache
    if _drug_cache is None:
        with _drug_cache_lock:
            if _drug_cache is None:
                _drug_cache = build_drug_cache()
    return _drug_cache
