"""
Cache layer — storage-agnostic TTL cache for readings and assessments.

Provides:
    • CacheManager: get / set / invalidate with TTL semantics
    • Geographic bucket keys so nearby requests share entries
    • Stale reads: entries outlive their TTL for a retention window and can
      be returned explicitly (allow_stale=True) when a provider fails
    • Single-flight coalescing of identical in-flight fetches
    • In-process memory backend and async Redis backend

Key layout:
    reading:{bucket}:{provider}:{hazard}
    assessment:{bucket}:{hazards}:{providers}

TTL policy (defaults, see config):
    raw per-provider readings     1 h
    aggregated assessments        1 h
    static provider data         24 h  (e.g. regulatory flood zone)

Backend failures are logged and reported as a miss / failed write; the
cache is never allowed to fail a request.

Usage:
    cache = CacheManager.from_settings()

    await cache.set(key, reading, ttl=3600)
    entry = await cache.get(key)
    if entry and not entry.stale:
        use(entry.value)
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple, TypeVar, Union

from seawater.app.core.config import Settings, settings as default_settings
from seawater.app.risk.models import Coordinate, HazardType, RiskAssessment, SourceReading

logger = logging.getLogger(__name__)

T = TypeVar("T")
CacheValue = Union[SourceReading, RiskAssessment]

READING_PREFIX = "reading"
ASSESSMENT_PREFIX = "assessment"


@dataclass(frozen=True)
class CacheEntry:
    """A cached value plus its timing metadata (epoch seconds)."""
    key: str
    value: CacheValue
    stored_at: float
    expires_at: float
    stale: bool = False


class _Inflight:
    __slots__ = ("task", "waiters")

    def __init__(self, task: "asyncio.Future[Any]"):
        self.task = task
        self.waiters = 0


# ═══════════════════════════════════════════════════════════════════════════
# Backends
# ═══════════════════════════════════════════════════════════════════════════

class CacheBackend(ABC):
    """Raw envelope storage.  Envelopes are JSON-safe dicts."""

    name = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def set(self, key: str, envelope: Dict[str, Any], retain_seconds: int) -> bool:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """
    In-process dict with a size bound (oldest entries evicted first).

    A threading lock guards the dict; critical sections never await, so
    the backend is safe for concurrent coroutines and threads alike.
    """

    name = "memory"

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.time):
        self.max_entries = max_entries
        self._clock = clock
        self._store: "OrderedDict[str, Tuple[Dict[str, Any], float]]" = OrderedDict()
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            envelope, purge_at = item
            if self._clock() >= purge_at:
                del self._store[key]
                return None
            return envelope

    async def set(self, key: str, envelope: Dict[str, Any], retain_seconds: int) -> bool:
        with self._lock:
            self._store[key] = (envelope, self._clock() + retain_seconds)
            self._store.move_to_end(key)
            while len(self._store) > self.max_entries:
                self._store.popitem(last=False)
        return True

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._store if k.startswith(prefix)]
            for k in keys:
                del self._store[k]
        return len(keys)

    def __len__(self) -> int:
        return len(self._store)


class RedisCacheBackend(CacheBackend):
    """Async Redis client, created lazily on first use."""

    name = "redis"

    def __init__(self, url: str):
        self.url = url
        self._client = None

    async def _get_redis(self):
        if self._client is None:
            import redis.asyncio as aioredis

            self._client = aioredis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis cache configured: %s", self.url.split("@")[-1])
        return self._client

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            client = await self._get_redis()
            raw = await client.get(key)
            if raw is not None:
                return json.loads(raw)
        except Exception as e:
            logger.warning("Cache GET error for %s: %s", key, e)
        return None

    async def set(self, key: str, envelope: Dict[str, Any], retain_seconds: int) -> bool:
        try:
            client = await self._get_redis()
            await client.set(key, json.dumps(envelope, default=str), ex=max(1, int(retain_seconds)))
            return True
        except Exception as e:
            logger.warning("Cache SET error for %s: %s", key, e)
            return False

    async def delete(self, key: str) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.delete(key))
        except Exception as e:
            logger.warning("Cache DELETE error for %s: %s", key, e)
            return False

    async def delete_prefix(self, prefix: str) -> int:
        try:
            client = await self._get_redis()
            keys = []
            async for key in client.scan_iter(f"{prefix}*"):
                keys.append(key)
            if keys:
                await client.delete(*keys)
            return len(keys)
        except Exception as e:
            logger.warning("Cache CLEAR error for %s*: %s", prefix, e)
            return 0

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except Exception as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("Redis connection closed")


# ═══════════════════════════════════════════════════════════════════════════
# Cache manager
# ═══════════════════════════════════════════════════════════════════════════

def _serialise(value: CacheValue) -> Tuple[str, Dict[str, Any]]:
    if isinstance(value, SourceReading):
        return READING_PREFIX, value.to_dict()
    if isinstance(value, RiskAssessment):
        return ASSESSMENT_PREFIX, value.to_dict()
    raise TypeError(f"Cannot cache {type(value).__name__}")


def _deserialise(kind: str, data: Dict[str, Any]) -> CacheValue:
    if kind == READING_PREFIX:
        return SourceReading.from_dict(data)
    if kind == ASSESSMENT_PREFIX:
        return RiskAssessment.from_dict(data)
    raise ValueError(f"Unknown cache entry kind: {kind!r}")


class CacheManager:
    """
    Explicitly constructed, shared cache for one process.

    Concurrent writers to the same key race with last-write-wins; values
    for one key inside a TTL window are expected to be equivalent.
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        *,
        key_prefix: str = "",
        bucket_degrees: float = 0.001,
        stale_retention_seconds: int = 7 * 86400,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend if backend is not None else MemoryCacheBackend(clock=clock)
        self.key_prefix = key_prefix
        self.bucket_degrees = bucket_degrees
        self.stale_retention_seconds = stale_retention_seconds
        self._clock = clock
        self._inflight: Dict[str, _Inflight] = {}
        self._stats: Dict[str, int] = {
            "hits": 0,
            "misses": 0,
            "stale_hits": 0,
            "sets": 0,
            "invalidations": 0,
            "errors": 0,
            "coalesced": 0,
        }

    @classmethod
    def from_settings(
        cls,
        config: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ) -> "CacheManager":
        config = config or default_settings
        if config.CACHE_BACKEND == "redis":
            backend: CacheBackend = RedisCacheBackend(config.REDIS_URL)
        else:
            backend = MemoryCacheBackend(max_entries=config.MEMORY_CACHE_MAX_ENTRIES, clock=clock)
        return cls(
            backend,
            key_prefix=config.CACHE_KEY_PREFIX,
            bucket_degrees=config.CACHE_BUCKET_DEGREES,
            stale_retention_seconds=config.STALE_RETENTION_SECONDS,
            clock=clock,
        )

    # ── keys ──

    def bucket(self, coordinate: Coordinate) -> str:
        return coordinate.bucket(self.bucket_degrees)

    def reading_key(self, coordinate: Coordinate, provider_id: str, hazard: HazardType) -> str:
        return f"{READING_PREFIX}:{self.bucket(coordinate)}:{provider_id}:{hazard.value}"

    def assessment_key(
        self,
        coordinate: Coordinate,
        hazards: Iterable[HazardType],
        providers: Iterable[str],
    ) -> str:
        hazard_part = ",".join(sorted(h.value for h in hazards))
        provider_part = ",".join(sorted(providers))
        return f"{ASSESSMENT_PREFIX}:{self.bucket(coordinate)}:{hazard_part}:{provider_part}"

    def _full(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    # ── operations ──

    async def get(self, key: str, allow_stale: bool = False) -> Optional[CacheEntry]:
        """
        Fetch an entry.  Expired entries are a miss unless allow_stale,
        in which case they come back with stale=True.
        """
        envelope = await self.backend.get(self._full(key))
        if envelope is None:
            self._stats["misses"] += 1
            return None

        try:
            value = _deserialise(envelope["kind"], envelope["value"])
            stored_at = float(envelope["stored_at"])
            expires_at = float(envelope["expires_at"])
        except (KeyError, TypeError, ValueError) as e:
            self._stats["errors"] += 1
            logger.warning("Discarding unreadable cache entry %s: %s", key, e)
            await self.backend.delete(self._full(key))
            return None

        stale = self._clock() >= expires_at
        if stale and not allow_stale:
            self._stats["misses"] += 1
            return None

        self._stats["stale_hits" if stale else "hits"] += 1
        return CacheEntry(key, value, stored_at, expires_at, stale)

    async def set(self, key: str, value: CacheValue, ttl: int) -> bool:
        kind, data = _serialise(value)
        now = self._clock()
        envelope = {
            "kind": kind,
            "value": data,
            "stored_at": now,
            "expires_at": now + ttl,
        }
        ok = await self.backend.set(
            self._full(key), envelope, retain_seconds=ttl + self.stale_retention_seconds
        )
        if ok:
            self._stats["sets"] += 1
        else:
            self._stats["errors"] += 1
        return ok

    async def invalidate(self, key: str) -> bool:
        self._stats["invalidations"] += 1
        return await self.backend.delete(self._full(key))

    async def invalidate_prefix(self, prefix: str) -> int:
        removed = await self.backend.delete_prefix(self._full(prefix))
        self._stats["invalidations"] += removed
        return removed

    async def invalidate_bucket(self, coordinate: Coordinate) -> int:
        """Drop every reading and assessment cached for the coordinate's bucket."""
        bucket = self.bucket(coordinate)
        removed = 0
        for kind in (READING_PREFIX, ASSESSMENT_PREFIX):
            removed += await self.invalidate_prefix(f"{kind}:{bucket}:")
        logger.info("Invalidated %d cache entries for bucket %s", removed, bucket)
        return removed

    async def coalesce(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run factory() at most once at a time per key.

        Concurrent callers with the same key await the same in-flight
        task.  The task is shielded, so one caller being cancelled does
        not cancel it for the others; when the last waiter is cancelled
        the task is cancelled too.
        """
        flight = self._inflight.get(key)
        if flight is None or flight.task.done():
            task = asyncio.ensure_future(factory())
            flight = _Inflight(task)
            self._inflight[key] = flight

            def _done(t: "asyncio.Future[Any]", k: str = key) -> None:
                current = self._inflight.get(k)
                if current is not None and current.task is t:
                    del self._inflight[k]
                if not t.cancelled():
                    t.exception()  # mark retrieved when no caller is left

            task.add_done_callback(_done)
        else:
            self._stats["coalesced"] += 1
            logger.debug("Coalesced duplicate fetch for %s", key)

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            if flight.waiters <= 1 and not flight.task.done():
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1

    def inflight_count(self) -> int:
        return len(self._inflight)

    def stats(self) -> Dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["misses"] + self._stats["stale_hits"]
        return {
            **self._stats,
            "backend": self.backend.name,
            "hit_rate": round(self._stats["hits"] / lookups, 4) if lookups else 0.0,
        }

    async def close(self) -> None:
        await self.backend.close()
