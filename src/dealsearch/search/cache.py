"""
Search result cache with per-entry TTL, capacity-bounded eviction and
background cleanup. Cache failures degrade to misses and never reach the
search path.
"""

import asyncio
import copy
import hashlib
import json
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from ..config import CacheConfig, get_config_manager
from ..errors import CacheError, ErrorContext, report_error
from ..lifecycle import Lifecycle, start_ticker, stop_ticker
from ..models import QuerySpec

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    """Cached payload together with its expiry and access metadata."""

    key: str
    payload: Any
    compressed: bool
    size_bytes: int
    created_at: float
    expires_at: float
    access_count: int
    last_accessed: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def access(self, now: float) -> None:
        """Mark entry as accessed."""
        self.access_count += 1
        self.last_accessed = now


class CompressionStrategy(ABC):
    """Codec applied to payloads above the compression threshold."""

    @abstractmethod
    def compress(self, payload: Any) -> Any:
        pass

    @abstractmethod
    def decompress(self, data: Any) -> Any:
        pass


class NoopCompression(CompressionStrategy):
    """Stores payloads as-is."""

    def compress(self, payload: Any) -> Any:
        return payload

    def decompress(self, data: Any) -> Any:
        return data


def _copy_payload(payload: Any) -> Any:
    """Detached copy so callers cannot mutate what is stored."""
    if hasattr(payload, "model_copy"):
        return payload.model_copy(deep=True)
    return copy.deepcopy(payload)


def _serialize_payload(payload: Any) -> str:
    if hasattr(payload, "model_dump_json"):
        return payload.model_dump_json()
    return json.dumps(payload, sort_keys=True, default=str)


def build_cache_key(spec: QuerySpec) -> str:
    """Derive the cache key for a normalized query.

    The key carries readable scope segments (query, type, category, company)
    for coarse invalidation, followed by a SHA-256 digest of the full
    canonical request.
    """
    canonical = {
        "query": spec.query,
        "type": spec.type,
        "category": spec.category or "",
        "company": spec.company or "",
        "tags": sorted(spec.tags),
        "min_price": spec.min_price,
        "max_price": spec.max_price,
        "min_discount": spec.min_discount,
        "max_discount": spec.max_discount,
        "has_coupon": spec.has_coupon,
        "coupon_type": spec.coupon_type or "",
        "featured": spec.featured,
        "sort": spec.sort or "relevance",
        "page": spec.page,
        "limit": spec.limit,
    }
    key_string = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(key_string.encode()).hexdigest()

    parts = [
        f"q:{spec.query.lower()}",
        f"t:{spec.type}",
        f"cat:{(spec.category or '').lower()}",
        f"co:{(spec.company or '').lower()}",
        f"h:{digest}",
    ]
    return "|".join(parts)


class ResultCache(Lifecycle):
    """
    Memoizes ranked search responses keyed by normalized query.

    Entries and their expiry live in one dictionary guarded by a single
    lock, so a reader can never observe one without the other. Expiry is
    lazy: an expired entry is a miss on read and is physically removed by
    the next read of that key or the next cleanup pass.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        compression: Optional[CompressionStrategy] = None,
        clock: Clock = time.time,
    ):
        self.config = config or get_config_manager().get_cache_config()
        self.compression = compression or NoopCompression()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "expirations": 0,
            "errors": 0,
        }

        self._cleanup_task: Optional[asyncio.Task] = None
        self._initialized = False

    async def initialize(self) -> None:
        """Start the periodic cleanup worker."""
        if self._initialized:
            return

        self._cleanup_task = start_ticker(
            "result-cache-cleanup", self.config.cleanup_interval_seconds, self.cleanup
        )
        self._initialized = True
        logger.info(
            f"Result cache initialized: max_entries={self.config.max_entries}, "
            f"default_ttl={self.config.default_ttl_seconds}s"
        )

    async def shutdown(self) -> None:
        """Stop the cleanup worker. Cached entries are kept."""
        if not self._initialized:
            return

        await stop_ticker(self._cleanup_task)
        self._cleanup_task = None
        self._initialized = False
        logger.info("Result cache shut down")

    def key(self, spec: QuerySpec) -> str:
        return build_cache_key(spec)

    async def get(self, spec: QuerySpec) -> Optional[Any]:
        """Return the cached payload for ``spec`` or None on miss."""
        try:
            key = self.key(spec)
            async with self._lock:
                now = self._clock()
                entry = self._entries.get(key)

                if entry is None or entry.is_expired(now):
                    if entry is not None:
                        del self._entries[key]
                        self._stats["expirations"] += 1
                    self._stats["misses"] += 1
                    logger.debug(f"Cache miss for {key[:48]}")
                    return None

                entry.access(now)
                self._stats["hits"] += 1
                data = entry.payload

            logger.debug(f"Cache hit for {key[:48]}")
            if entry.compressed:
                data = self.compression.decompress(data)
            return _copy_payload(data)
        except Exception as e:
            self._stats["errors"] += 1
            await self._report_failure("get", spec, f"Cache read failed, treating as miss: {e}", e)
            return None

    async def set(self, spec: QuerySpec, payload: Any, ttl: Optional[float] = None) -> bool:
        """Store ``payload`` for ``spec``. Returns False if the write was skipped."""
        try:
            key = self.key(spec)
            ttl_seconds = ttl if ttl is not None else self.config.default_ttl_seconds

            serialized = _serialize_payload(payload)
            size_bytes = len(serialized.encode())
            should_compress = size_bytes > self.config.compression_threshold_bytes
            stored = _copy_payload(payload)
            data = self.compression.compress(stored) if should_compress else stored

            async with self._lock:
                if key not in self._entries and len(self._entries) >= self.config.max_entries:
                    self._cleanup_locked()

                now = self._clock()
                self._entries[key] = CacheEntry(
                    key=key,
                    payload=data,
                    compressed=should_compress,
                    size_bytes=size_bytes,
                    created_at=now,
                    expires_at=now + ttl_seconds,
                    access_count=1,
                    last_accessed=now,
                )

            logger.debug(f"Cached {size_bytes} bytes for {key[:48]} (ttl={ttl_seconds}s)")
            return True
        except Exception as e:
            self._stats["errors"] += 1
            await self._report_failure("set", spec, f"Cache write failed, skipping: {e}", e)
            return False

    async def _report_failure(
        self, operation: str, spec: QuerySpec, message: str, cause: Exception
    ) -> None:
        query = getattr(spec, "query", None)
        error = CacheError(
            message,
            context=ErrorContext(operation=operation, component="result_cache", query=query),
            cause=cause,
        )
        try:
            await report_error(error)
        except Exception as e:
            logger.error(f"{message} (reporting failed: {e})")

    async def contains(self, spec: QuerySpec) -> bool:
        """Whether a live entry exists for ``spec``. Does not touch hit/miss counters."""
        key = self.key(spec)
        async with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    async def delete(self, spec: QuerySpec) -> bool:
        key = self.key(spec)
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def cleanup(self) -> int:
        """Evict expired entries, then the least recently accessed if still full."""
        async with self._lock:
            evicted = self._cleanup_locked()

        if evicted:
            logger.info(f"Cache cleanup evicted {evicted} entries")
        return evicted

    def _cleanup_locked(self) -> int:
        now = self._clock()
        expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._entries[key]
        self._stats["expirations"] += len(expired_keys)

        evicted_lru = 0
        if len(self._entries) >= self.config.max_entries:
            # Stable sort keeps insertion order among equal access times
            by_access = sorted(self._entries.values(), key=lambda entry: entry.last_accessed)
            remove_count = max(1, math.floor(self.config.max_entries * self.config.eviction_fraction))
            for entry in by_access[:remove_count]:
                del self._entries[entry.key]
            evicted_lru = min(remove_count, len(by_access))
            self._stats["evictions"] += evicted_lru

        return len(expired_keys) + evicted_lru

    async def invalidate_pattern(self, pattern: str) -> int:
        """Remove every entry whose key contains ``pattern``."""
        async with self._lock:
            keys_to_delete = [key for key in self._entries if pattern in key]
            for key in keys_to_delete:
                del self._entries[key]

        if keys_to_delete:
            logger.info(f"Invalidated {len(keys_to_delete)} cache entries matching '{pattern}'")
        return len(keys_to_delete)

    async def clear(self) -> int:
        """Clear all cache entries."""
        async with self._lock:
            entry_count = len(self._entries)
            self._entries.clear()

        logger.info(f"Cleared cache ({entry_count} entries)")
        return entry_count

    async def warm_up(
        self, specs: Iterable[QuerySpec], compute: Callable[[QuerySpec], Awaitable[Any]]
    ) -> int:
        """Pre-populate the cache for ``specs`` that are not cached yet."""
        warmed = 0
        for spec in specs:
            if await self.contains(spec):
                continue
            try:
                payload = await compute(spec)
            except Exception as e:
                logger.warning(f"Cache warming failed for query '{spec.query}': {e}")
                continue
            if await self.set(spec, payload):
                warmed += 1

        if warmed:
            logger.info(f"Warmed cache with {warmed} queries")
        return warmed

    async def get_most_accessed(self, limit: int = 10) -> List[Dict[str, Any]]:
        async with self._lock:
            entries = sorted(
                self._entries.values(), key=lambda entry: entry.access_count, reverse=True
            )
            return [
                {
                    "key": entry.key,
                    "access_count": entry.access_count,
                    "size": entry.size_bytes,
                    "created_at": entry.created_at,
                    "last_accessed": entry.last_accessed,
                }
                for entry in entries[:limit]
            ]

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics without modifying the cache."""
        async with self._lock:
            now = self._clock()
            total_entries = len(self._entries)
            total_size = sum(entry.size_bytes for entry in self._entries.values())
            expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
            compressed = sum(1 for entry in self._entries.values() if entry.compressed)

            lookups = self._stats["hits"] + self._stats["misses"]
            hit_rate = self._stats["hits"] / lookups if lookups > 0 else 0.0

            return {
                **self._stats.copy(),
                "total_entries": total_entries,
                "expired_entries": expired,
                "compressed_entries": compressed,
                "total_size": total_size,
                "average_size": round(total_size / total_entries) if total_entries else 0,
                "hit_rate": hit_rate,
                "max_entries": self.config.max_entries,
            }

    def __len__(self) -> int:
        return len(self._entries)
