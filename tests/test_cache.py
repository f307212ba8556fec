"""Tests for the search result cache."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from dealsearch.config import CacheConfig
from dealsearch.errors import CacheError, ErrorReporter, set_error_reporter
from dealsearch.models import QuerySpec, SearchResults
from dealsearch.search.cache import CompressionStrategy, ResultCache, build_cache_key


class RecordingCompression(CompressionStrategy):
    """Wraps payloads so tests can tell compressed entries apart."""

    def compress(self, payload):
        return ("packed", payload)

    def decompress(self, data):
        return data[1]


class FailingCompression(CompressionStrategy):
    def compress(self, payload):
        raise RuntimeError("codec unavailable")

    def decompress(self, data):
        raise RuntimeError("codec unavailable")


class UnserializablePayload:
    def model_dump_json(self):
        raise TypeError("cannot serialize")


class TestCacheKey:
    """Test cache key derivation."""

    def test_tag_order_does_not_matter(self):
        assert build_cache_key(QuerySpec(query="tv", tags=["b", "a"])) == build_cache_key(
            QuerySpec(query="tv", tags=["a", "b"])
        )

    def test_explicit_defaults_match_omitted(self):
        explicit = QuerySpec(query="tv", type="all", sort="relevance", page=1, limit=20)

        assert build_cache_key(QuerySpec(query="tv")) == build_cache_key(explicit)

    def test_empty_string_matches_absent(self):
        assert build_cache_key(QuerySpec(query="tv", category="")) == build_cache_key(
            QuerySpec(query="tv", category=None)
        )

    def test_differing_requests_differ(self):
        base = build_cache_key(QuerySpec(query="tv"))

        assert build_cache_key(QuerySpec(query="tv", page=2)) != base
        assert build_cache_key(QuerySpec(query="tv", sort="newest")) != base
        assert build_cache_key(QuerySpec(query="TV")) != base

    def test_key_carries_readable_scope(self):
        key = build_cache_key(QuerySpec(query="TV", type="deals", company="Acme"))

        assert key.startswith("q:tv|t:deals|cat:|co:acme|h:")


class TestResultCache:
    """Test result cache behavior."""

    @pytest_asyncio.fixture
    async def cache(self, clock):
        """Cache with a small capacity and a fake clock."""
        config = CacheConfig(default_ttl_seconds=60, max_entries=3)
        cache = ResultCache(config, clock=clock)
        yield cache
        await cache.shutdown()

    @pytest.mark.asyncio
    async def test_set_and_get(self, cache):
        spec = QuerySpec(query="tv")
        payload = SearchResults(deals=[{"id": 1}], total_deals=1)

        assert await cache.set(spec, payload) is True
        assert await cache.get(spec) == payload

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, cache):
        assert await cache.get(QuerySpec(query="radio")) is None

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, cache, clock):
        """Test that an entry is served until its TTL has elapsed."""
        spec = QuerySpec(query="tv")
        await cache.set(spec, {"deals": []}, ttl=1.0)

        assert await cache.get(spec) == {"deals": []}

        clock.advance(1.1)

        assert await cache.get(spec) is None
        assert len(cache) == 0
        stats = await cache.get_stats()
        assert stats["expirations"] == 1

    @pytest.mark.asyncio
    async def test_default_ttl_applies(self, cache, clock):
        spec = QuerySpec(query="tv")
        await cache.set(spec, {"ok": True})

        clock.advance(59)
        assert await cache.get(spec) is not None

        clock.advance(2)
        assert await cache.get(spec) is None

    @pytest.mark.asyncio
    async def test_capacity_never_exceeded(self, cache, clock):
        for i in range(10):
            clock.advance(1)
            await cache.set(QuerySpec(query=f"q{i}"), {"i": i})
            assert len(cache) <= 3

    @pytest.mark.asyncio
    async def test_least_recently_accessed_is_evicted(self, cache, clock):
        """Test that re-accessed entries survive eviction."""
        specs = [QuerySpec(query=f"k{i}") for i in range(1, 5)]

        for spec in specs[:3]:
            clock.advance(1)
            await cache.set(spec, {"query": spec.query})

        clock.advance(1)
        assert await cache.get(specs[0]) is not None

        clock.advance(1)
        await cache.set(specs[3], {"query": "k4"})

        assert await cache.get(specs[0]) is not None
        assert await cache.get(specs[1]) is None
        assert await cache.get(specs[2]) is not None
        assert await cache.get(specs[3]) is not None

        stats = await cache.get_stats()
        assert stats["evictions"] == 1

    @pytest.mark.asyncio
    async def test_overwrite_at_capacity_does_not_evict(self, cache, clock):
        specs = [QuerySpec(query=f"k{i}") for i in range(3)]
        for spec in specs:
            clock.advance(1)
            await cache.set(spec, {"v": 1})

        await cache.set(specs[0], {"v": 2})

        assert len(cache) == 3
        assert await cache.get(specs[0]) == {"v": 2}

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_first(self, cache, clock):
        await cache.set(QuerySpec(query="old"), {"v": 1}, ttl=5)
        await cache.set(QuerySpec(query="new"), {"v": 2}, ttl=100)

        clock.advance(10)
        evicted = await cache.cleanup()

        assert evicted == 1
        assert len(cache) == 1
        assert await cache.get(QuerySpec(query="new")) == {"v": 2}

    @pytest.mark.asyncio
    async def test_cleanup_counts_expired_and_lru(self, clock):
        cache = ResultCache(CacheConfig(max_entries=4), clock=clock)
        await cache.set(QuerySpec(query="a"), {"v": 1}, ttl=1)
        for query in ("b", "c", "d"):
            clock.advance(1)
            await cache.set(QuerySpec(query=query), {"v": query})

        clock.advance(1)
        cache.config.max_entries = 2

        assert await cache.cleanup() == 2
        assert await cache.get(QuerySpec(query="b")) is None
        assert await cache.get(QuerySpec(query="c")) is not None
        assert await cache.get(QuerySpec(query="d")) is not None

        stats = await cache.get_stats()
        assert stats["expirations"] == 1
        assert stats["evictions"] == 1

    @pytest.mark.asyncio
    async def test_invalidate_pattern(self, cache):
        await cache.set(QuerySpec(query="tv", company="Acme"), {"v": 1})
        await cache.set(QuerySpec(query="radio", company="Acme"), {"v": 2})
        await cache.set(QuerySpec(query="tv", company="Other"), {"v": 3})

        removed = await cache.invalidate_pattern("co:acme")

        assert removed == 2
        assert len(cache) == 1
        assert await cache.get(QuerySpec(query="tv", company="Other")) == {"v": 3}

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, cache):
        spec = QuerySpec(query="tv")
        await cache.set(spec, {"v": 1})
        await cache.set(QuerySpec(query="radio"), {"v": 2})

        assert await cache.delete(spec) is True
        assert await cache.delete(spec) is False
        assert await cache.clear() == 1
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_hit_rate_is_computed(self, cache):
        spec = QuerySpec(query="tv")
        await cache.set(spec, {"v": 1})

        await cache.get(spec)
        await cache.get(spec)
        await cache.get(spec)
        await cache.get(QuerySpec(query="missing"))

        stats = await cache.get_stats()
        assert stats["hits"] == 3
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(0.75)
        assert stats["total_entries"] == 1
        assert stats["max_entries"] == 3
        assert stats["total_size"] > 0

    @pytest.mark.asyncio
    async def test_stats_on_empty_cache(self, cache):
        stats = await cache.get_stats()

        assert stats["hit_rate"] == 0.0
        assert stats["average_size"] == 0

    @pytest.mark.asyncio
    async def test_compression_above_threshold(self, clock):
        cache = ResultCache(
            CacheConfig(compression_threshold_bytes=10),
            compression=RecordingCompression(),
            clock=clock,
        )
        small = QuerySpec(query="small")
        large = QuerySpec(query="large")

        await cache.set(small, {"a": 1})
        await cache.set(large, {"text": "x" * 100})

        assert await cache.get(large) == {"text": "x" * 100}
        assert await cache.get(small) == {"a": 1}
        stats = await cache.get_stats()
        assert stats["compressed_entries"] == 1

    @pytest.mark.asyncio
    async def test_failing_compression_skips_write(self, clock):
        cache = ResultCache(
            CacheConfig(compression_threshold_bytes=0), compression=FailingCompression(), clock=clock
        )
        spec = QuerySpec(query="tv")

        assert await cache.set(spec, {"text": "payload"}) is False
        assert await cache.get(spec) is None
        stats = await cache.get_stats()
        assert stats["errors"] == 1

    @pytest.mark.asyncio
    async def test_unserializable_payload_skips_write(self, cache):
        assert await cache.set(QuerySpec(query="tv"), UnserializablePayload()) is False
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_read_failure_degrades_to_miss(self, cache):
        with patch.object(cache, "key", side_effect=RuntimeError("broken")):
            assert await cache.get(QuerySpec(query="tv")) is None

        stats = await cache.get_stats()
        assert stats["errors"] == 1

    @pytest.mark.asyncio
    async def test_warm_up(self, cache):
        specs = [QuerySpec(query="tv"), QuerySpec(query="radio")]
        compute = AsyncMock(side_effect=lambda spec: {"query": spec.query})

        assert await cache.warm_up(specs, compute) == 2
        assert await cache.warm_up(specs, compute) == 0
        assert compute.await_count == 2
        assert await cache.get(specs[1]) == {"query": "radio"}

    @pytest.mark.asyncio
    async def test_warm_up_skips_failures(self, cache):
        compute = AsyncMock(side_effect=RuntimeError("fetch failed"))

        assert await cache.warm_up([QuerySpec(query="tv")], compute) == 0
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_get_most_accessed(self, cache):
        popular = QuerySpec(query="popular")
        await cache.set(popular, {"v": 1})
        await cache.set(QuerySpec(query="rare"), {"v": 2})
        await cache.get(popular)
        await cache.get(popular)

        top = await cache.get_most_accessed(limit=1)

        assert len(top) == 1
        assert top[0]["key"] == build_cache_key(popular)
        assert top[0]["access_count"] == 3

    @pytest.mark.asyncio
    async def test_expired_entry_frees_room_before_lru(self, cache, clock):
        """Test that a full cache drops expired entries and keeps live ones."""
        expired = QuerySpec(query="a")
        least_recent = QuerySpec(query="b")
        recent = QuerySpec(query="c")

        await cache.set(expired, {"v": "a"}, ttl=1)
        clock.advance(1)
        await cache.set(least_recent, {"v": "b"})
        clock.advance(1)
        await cache.set(recent, {"v": "c"})
        clock.advance(1)
        await cache.get(recent)

        clock.advance(5)
        await cache.set(QuerySpec(query="d"), {"v": "d"})

        assert len(cache) == 3
        assert await cache.contains(expired) is False
        assert await cache.contains(least_recent) is True
        assert await cache.contains(recent) is True
        stats = await cache.get_stats()
        assert stats["expirations"] == 1
        assert stats["evictions"] == 0

    @pytest.mark.asyncio
    async def test_returned_payload_is_detached(self, cache):
        spec = QuerySpec(query="nike")
        payload = SearchResults(deals=[{"id": 1}, {"id": 2}], total_deals=2)
        await cache.set(spec, payload)

        payload.deals.clear()
        first = await cache.get(spec)
        first.deals.clear()
        second = await cache.get(spec)

        assert second is not first
        assert [deal["id"] for deal in second.deals] == [1, 2]

    @pytest.mark.asyncio
    async def test_plain_payload_is_detached(self, cache):
        spec = QuerySpec(query="tv")
        await cache.set(spec, {"deals": [{"id": 1}]})

        (await cache.get(spec))["deals"].append({"id": 2})

        assert await cache.get(spec) == {"deals": [{"id": 1}]}

    @pytest.mark.asyncio
    async def test_contains_does_not_count_lookups(self, cache, clock):
        spec = QuerySpec(query="tv")
        await cache.set(spec, {"v": 1}, ttl=1)

        assert await cache.contains(spec) is True
        clock.advance(2)
        assert await cache.contains(spec) is False

        stats = await cache.get_stats()
        assert stats["hits"] == 0
        assert stats["misses"] == 0

    @pytest.mark.asyncio
    async def test_warm_up_leaves_hit_rate_untouched(self, cache):
        compute = AsyncMock(side_effect=lambda spec: {"query": spec.query})
        specs = [QuerySpec(query="tv"), QuerySpec(query="radio")]

        await cache.warm_up(specs, compute)
        await cache.warm_up(specs, compute)

        stats = await cache.get_stats()
        assert stats["hits"] == 0
        assert stats["misses"] == 0
        assert stats["hit_rate"] == 0.0


class TestCacheFailureReporting:
    """Test that degraded cache paths reach the error reporter."""

    def teardown_method(self):
        set_error_reporter(None)

    @pytest.mark.asyncio
    async def test_write_failure_reports_cache_error(self, clock):
        reported = []

        class CollectingReporter(ErrorReporter):
            async def report_error(self, error):
                reported.append(error)

        set_error_reporter(CollectingReporter())
        cache = ResultCache(
            CacheConfig(compression_threshold_bytes=0), compression=FailingCompression(), clock=clock
        )

        assert await cache.set(QuerySpec(query="tv"), {"v": 1}) is False

        assert len(reported) == 1
        assert isinstance(reported[0], CacheError)
        assert reported[0].context.operation == "set"
        assert reported[0].context.query == "tv"
        assert isinstance(reported[0].cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_failing_reporter_still_degrades_to_miss(self, clock):
        class BrokenReporter(ErrorReporter):
            async def report_error(self, error):
                raise ConnectionError("reporter down")

        set_error_reporter(BrokenReporter())
        cache = ResultCache(CacheConfig(), clock=clock)

        with patch.object(cache, "key", side_effect=RuntimeError("broken")):
            assert await cache.get(QuerySpec(query="tv")) is None


class TestResultCacheLifecycle:
    """Test background cleanup worker."""

    @pytest.mark.asyncio
    async def test_background_cleanup_removes_expired(self, clock):
        cache = ResultCache(CacheConfig(cleanup_interval_seconds=0.01), clock=clock)
        await cache.set(QuerySpec(query="tv"), {"v": 1}, ttl=1)
        clock.advance(5)

        await cache.initialize()
        try:
            await asyncio.sleep(0.1)
            assert len(cache) == 0
        finally:
            await cache.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, clock):
        cache = ResultCache(CacheConfig(), clock=clock)

        await cache.initialize()
        await cache.initialize()
        await cache.shutdown()
        await cache.shutdown()

        assert cache._cleanup_task is None
