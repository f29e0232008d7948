"""
MedRoute Cache Module

Partitioned in-process cache with per-partition LRU bounds, TTLs and
hit/miss accounting, plus an optional Redis tier for query embeddings.

The in-process layer is single-instance. Multi-instance deployments plug a
shared implementation in through the CacheBackend protocol.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ============================================
# Constants
# ============================================

SEARCH_PARTITION = "search"
STORE_PARTITION = "store"
SESSION_PARTITION = "session"
GENERAL_PARTITION = "general"

DEFAULT_HEALTH_THRESHOLD = 0.5

# Redis embedding tier: 7 days
DEFAULT_EMBEDDING_TTL_SECONDS = 7 * 24 * 60 * 60
EMBEDDING_KEY_PREFIX = "emb:"


# ============================================
# Data Types
# ============================================


@dataclass
class CacheEntry:
    value: Any
    timestamp: float
    ttl: float

    def is_live(self, now: float) -> bool:
        return now - self.timestamp < self.ttl


@dataclass(frozen=True)
class CachePartition:
    """Size and TTL configuration for one named partition."""

    name: str
    max_size: int
    default_ttl: float


@dataclass
class CacheStats:
    hits: int
    misses: int
    size: int
    max_size: int
    hit_rate: float


DEFAULT_PARTITIONS = (
    CachePartition(SEARCH_PARTITION, max_size=1000, default_ttl=60 * 60),
    CachePartition(STORE_PARTITION, max_size=500, default_ttl=30 * 60),
    CachePartition(SESSION_PARTITION, max_size=2000, default_ttl=15 * 60),
    CachePartition(GENERAL_PARTITION, max_size=500, default_ttl=5 * 60),
)


# ============================================
# Backends
# ============================================


class CacheBackend(Protocol):
    """Storage for one partition. Expiry is decided by CacheLayer, not here."""

    def get(self, key: str) -> CacheEntry | None: ...

    def set(self, key: str, entry: CacheEntry) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self) -> list[str]: ...

    def clear(self) -> None: ...

    def __len__(self) -> int: ...


class LRUBackend:
    """Bounded least-recently-used map."""

    def __init__(self, max_size: int) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._data: OrderedDict[str, CacheEntry] = OrderedDict()

    def get(self, key: str) -> CacheEntry | None:
        entry = self._data.get(key)
        if entry is not None:
            self._data.move_to_end(key)
        return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = entry
        while len(self._data) > self.max_size:
            self._data.popitem(last=False)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


# ============================================
# Cache Layer
# ============================================


def make_key(partition: str, key: str, params: dict[str, Any] | None = None) -> str:
    """Build the composite key ``partition:key[:hash(sorted params)]``."""
    base = f"{partition}:{key}"
    if not params:
        return base
    encoded = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha256(encoded.encode()).hexdigest()[:16]
    return f"{base}:{digest}"


class CacheLayer:
    """Named TTL/LRU partitions with hit/miss accounting.

    Attributes:
        health_threshold: Average hit rate above which the cache is healthy.
    """

    def __init__(
        self,
        partitions: list[CachePartition] | tuple[CachePartition, ...] | None = None,
        clock: Callable[[], float] = time.monotonic,
        health_threshold: float = DEFAULT_HEALTH_THRESHOLD,
        backend_factory: Callable[[CachePartition], CacheBackend] | None = None,
    ) -> None:
        """Initialize the cache layer.

        Args:
            partitions: Partition configuration. Defaults to search, store,
                session and general.
            clock: Monotonic time source in seconds.
            health_threshold: Hit-rate threshold for get_health_status.
            backend_factory: Builds the storage for each partition.
                Defaults to an in-process LRU map.
        """
        self._clock = clock
        self.health_threshold = health_threshold
        factory = backend_factory or (lambda p: LRUBackend(p.max_size))

        self._partitions: dict[str, CachePartition] = {}
        self._backends: dict[str, CacheBackend] = {}
        self._hits: dict[str, int] = {}
        self._misses: dict[str, int] = {}

        for partition in partitions or DEFAULT_PARTITIONS:
            self._partitions[partition.name] = partition
            self._backends[partition.name] = factory(partition)
            self._hits[partition.name] = 0
            self._misses[partition.name] = 0

    @property
    def partitions(self) -> list[str]:
        return list(self._partitions)

    def _backend(self, partition: str) -> CacheBackend:
        try:
            return self._backends[partition]
        except KeyError:
            raise KeyError(f"Unknown cache partition: {partition}") from None

    def get(
        self, partition: str, key: str, params: dict[str, Any] | None = None
    ) -> Any | None:
        """Return a live entry's value, or None. Records a hit or a miss."""
        backend = self._backend(partition)
        entry = backend.get(make_key(partition, key, params))
        if entry is not None and entry.is_live(self._clock()):
            self._hits[partition] += 1
            return entry.value
        self._misses[partition] += 1
        return None

    def set(
        self,
        partition: str,
        key: str,
        value: Any,
        params: dict[str, Any] | None = None,
        ttl: float | None = None,
    ) -> None:
        """Store a value with the given or the partition-default TTL."""
        backend = self._backend(partition)
        entry_ttl = ttl if ttl is not None else self._partitions[partition].default_ttl
        backend.set(
            make_key(partition, key, params),
            CacheEntry(value=value, timestamp=self._clock(), ttl=entry_ttl),
        )

    async def get_or_set(
        self,
        partition: str,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        params: dict[str, Any] | None = None,
        ttl: float | None = None,
    ) -> T:
        """Return the cached value, or fetch, store and return a fresh one.

        If the fetcher raises and an expired entry is still resident, the
        stale value is returned instead of the error.

        Args:
            partition: Partition name.
            key: Base key.
            fetcher: Coroutine factory producing the value on a miss.
            params: Extra key parameters, serialised with sorted keys.
            ttl: TTL override in seconds.

        Returns:
            Cached, fresh or stale value.

        Raises:
            KeyError: If the partition does not exist.
            Exception: Whatever the fetcher raised, when no stale entry exists.
        """
        backend = self._backend(partition)
        full_key = make_key(partition, key, params)

        entry = backend.get(full_key)
        if entry is not None and entry.is_live(self._clock()):
            self._hits[partition] += 1
            return entry.value

        self._misses[partition] += 1
        try:
            value = await fetcher()
        except Exception as e:
            if entry is not None:
                logger.warning(
                    "Cache fetch failed for %s, serving stale entry: %s", full_key, e
                )
                return entry.value
            raise

        entry_ttl = ttl if ttl is not None else self._partitions[partition].default_ttl
        backend.set(
            full_key, CacheEntry(value=value, timestamp=self._clock(), ttl=entry_ttl)
        )
        return value

    def invalidate(self, partition: str, substring: str) -> int:
        """Remove every key in the partition containing ``substring``."""
        backend = self._backend(partition)
        removed = 0
        for key in backend.keys():
            if substring in key and backend.delete(key):
                removed += 1
        if removed:
            logger.debug("Invalidated %d entries in %s matching %r", removed, partition, substring)
        return removed

    def invalidate_everywhere(self, substring: str) -> int:
        """Remove keys containing ``substring`` from every partition."""
        return sum(self.invalidate(name, substring) for name in self._partitions)

    def invalidate_partition(self, partition: str) -> int:
        backend = self._backend(partition)
        removed = len(backend)
        backend.clear()
        return removed

    def invalidate_all(self) -> None:
        """Empty every partition and reset hit/miss counters."""
        for name, backend in self._backends.items():
            backend.clear()
            self._hits[name] = 0
            self._misses[name] = 0
        logger.info("All cache partitions cleared")

    def get_stats(self) -> dict[str, CacheStats]:
        stats = {}
        for name, partition in self._partitions.items():
            hits = self._hits[name]
            misses = self._misses[name]
            total = hits + misses
            stats[name] = CacheStats(
                hits=hits,
                misses=misses,
                size=len(self._backends[name]),
                max_size=partition.max_size,
                hit_rate=hits / total if total > 0 else 0.0,
            )
        return stats

    def get_health_status(self) -> dict[str, Any]:
        """Heuristic health: mean hit rate of partitions that saw traffic.

        Partitions with no hits or misses are left out of the mean, so this
        differs from a plain mean over all partitions: one busy partition at
        0.8 with three idle ones averages 0.8, not 0.2. A cache that has not
        served any request yet reports healthy.
        """
        stats = self.get_stats()
        active = [s.hit_rate for s in stats.values() if s.hits + s.misses > 0]
        average = sum(active) / len(active) if active else 0.0
        return {
            "healthy": not active or average > self.health_threshold,
            "average_hit_rate": round(average, 4),
            "threshold": self.health_threshold,
            "partitions": {
                name: {"size": s.size, "hit_rate": round(s.hit_rate, 4)}
                for name, s in stats.items()
            },
        }


# ============================================
# Redis Embedding Cache
# ============================================


class EmbeddingCache:
    """Content-addressed Redis tier for query embeddings.

    Keys are ``emb:{model}:{sha256(text)}``. Any Redis failure is treated as
    a cache miss so a Redis outage never fails a search.

    Attributes:
        ttl_seconds: Time-to-live for cached embeddings in seconds.
    """

    def __init__(
        self,
        redis_url: str,
        model_name: str,
        ttl_seconds: int = DEFAULT_EMBEDDING_TTL_SECONDS,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._redis_url = redis_url
        self._model_name = model_name
        self._redis: Any | None = None

    async def _get_redis(self) -> Any:
        """Lazily initialize the Redis connection."""
        if self._redis is None:
            import redis.asyncio as redis

            self._redis = redis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    def _make_key(self, text: str) -> str:
        text_hash = hashlib.sha256(text.encode()).hexdigest()
        return f"{EMBEDDING_KEY_PREFIX}{self._model_name}:{text_hash}"

    async def get(self, text: str) -> list[float] | None:
        """Cached embedding for the text, or None."""
        try:
            redis = await self._get_redis()
            cached = await redis.get(self._make_key(text))
            if cached:
                return json.loads(cached)
            return None
        except Exception as e:
            logger.debug("Embedding cache read failed: %s", e)
            return None

    async def set(self, text: str, embedding: list[float]) -> bool:
        try:
            redis = await self._get_redis()
            await redis.set(
                self._make_key(text), json.dumps(embedding), ex=self.ttl_seconds
            )
            return True
        except Exception as e:
            logger.debug("Embedding cache write failed: %s", e)
            return False

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
