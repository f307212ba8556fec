"""
Search engine facade: validates requests and composes the result cache,
the ranking engine and search analytics around a candidate fetch function.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .config import ApplicationConfig, get_config_manager
from .errors import (
    AnalyticsError,
    DealSearchError,
    ErrorContext,
    FetchError,
    RankingError,
    ValidationError,
    report_error,
)
from .lifecycle import Lifecycle
from .models import ENTITY_TYPES, AnalyticsReport, QuerySpec, RealTimeMetrics, SearchResults
from .search.analytics import EventSink, MetricsAggregator
from .search.cache import ResultCache
from .search.ranking import RankingEngine
from .search.suggestions import SuggestionProvider

logger = logging.getLogger(__name__)

RawResults = Union[SearchResults, Mapping[str, Any]]
FetchFunction = Callable[[QuerySpec], Awaitable[RawResults]]
QueryParams = Union[QuerySpec, Mapping[str, Any]]


def _parse_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class SearchEngine(Lifecycle):
    """Cache-or-compute search over candidates supplied by ``fetch``.

    Only request validation and fetch failures reach the caller. Cache,
    ranking, suggestion and analytics failures are logged and the request
    continues with unranked, uncached or unmeasured results.
    """

    def __init__(
        self,
        fetch: FetchFunction,
        config: Optional[ApplicationConfig] = None,
        cache: Optional[ResultCache] = None,
        ranking: Optional[RankingEngine] = None,
        analytics: Optional[MetricsAggregator] = None,
        suggestions: Optional[SuggestionProvider] = None,
        sink: Optional[EventSink] = None,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.config = config or get_config_manager().get_config()
        self.fetch = fetch
        self.cache = cache or ResultCache(self.config.cache, clock=clock)
        self.ranking = ranking or RankingEngine(self.config.ranking, clock=clock)
        self.analytics = analytics or MetricsAggregator(self.config.analytics, sink=sink, clock=clock)
        self.suggestions = suggestions or SuggestionProvider(self.analytics, self.config.search)
        self._timer = timer

    async def initialize(self) -> None:
        await self.cache.initialize()
        await self.analytics.initialize()
        logger.info("Search engine initialized")

    async def shutdown(self) -> None:
        await self.cache.shutdown()
        await self.analytics.shutdown()
        logger.info("Search engine shut down")

    async def __aenter__(self) -> "SearchEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    def normalize_query(self, params: QueryParams) -> QuerySpec:
        """Validate and normalize raw request parameters.

        Raises:
            ValidationError: If the query is too long or a field is invalid
        """
        search_config = self.config.search
        if isinstance(params, QuerySpec):
            data: Dict[str, Any] = params.model_dump()
        else:
            data = dict(params)
            if "q" in data and "query" not in data:
                data["query"] = data.pop("q")

        query = data.get("query")
        query = "" if query is None else str(query).strip()
        if len(query) > search_config.max_query_length:
            raise ValidationError(
                f"Query too long. Maximum {search_config.max_query_length} characters allowed.",
                field="query",
            )
        data["query"] = query

        data["page"] = max(1, _parse_int(data.get("page"), 1))
        limit = _parse_int(data.get("limit"), search_config.default_limit)
        data["limit"] = min(search_config.max_results, max(1, limit))

        try:
            return QuerySpec.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ValidationError(
                f"Invalid search parameter {field}: {first.get('msg')}", field=field, cause=e
            ) from e

    async def search(self, params: QueryParams) -> SearchResults:
        """Return ranked results for ``params``, from cache when possible."""
        started = self._timer()
        try:
            spec = self.normalize_query(params)
        except ValidationError as e:
            await self._record_error(None, e, self._elapsed_ms(started))
            raise

        if self.config.cache.enabled:
            cached = await self.cache.get(spec)
            if cached is not None:
                await self._record_search(spec, cached, self._elapsed_ms(started), "cache_hit")
                return cached

        try:
            raw = await self.fetch(spec)
            results = self._coerce_results(raw, spec)
        except Exception as e:
            error = FetchError(
                f"Candidate fetch failed: {e}",
                context=ErrorContext(operation="search", component="fetch", query=spec.query),
                cause=e,
            )
            await self._record_error(spec, error, self._elapsed_ms(started))
            if self.config.monitoring.error_reporting:
                await report_error(error)
            raise error from e

        ranked = await self._rank(results, spec)

        if self.config.search.enable_suggestions and spec.query:
            ranked.suggestions = await self.get_suggestions(spec.query)

        if self.config.cache.enabled:
            await self.cache.set(spec, ranked)

        await self._record_search(spec, ranked, self._elapsed_ms(started), "database_hit")
        return ranked

    async def _compute(self, spec: QuerySpec) -> SearchResults:
        raw = await self.fetch(spec)
        return await self._rank(self._coerce_results(raw, spec), spec)

    async def _rank(self, results: SearchResults, spec: QuerySpec) -> SearchResults:
        try:
            return self.ranking.rank_results(results, spec)
        except Exception as e:
            await self._report_degraded(
                RankingError(
                    f"Ranking failed, returning unranked results: {e}",
                    context=ErrorContext(operation="rank", component="ranking", query=spec.query),
                    cause=e,
                )
            )
            return results

    def _coerce_results(self, raw: RawResults, spec: QuerySpec) -> SearchResults:
        results = raw if isinstance(raw, SearchResults) else SearchResults.model_validate(dict(raw))

        updates: Dict[str, Any] = {"query": spec.query}
        for entity_type in ENTITY_TYPES:
            total_field = f"total_{entity_type}"
            if spec.type != "all" and spec.type != entity_type:
                updates[entity_type] = []
                updates[total_field] = 0
                continue
            items = getattr(results, entity_type) or []
            total = getattr(results, total_field)
            updates[total_field] = total if total else len(items)

        updates["total_results"] = sum(updates[f"total_{entity}"] for entity in ENTITY_TYPES)
        return results.model_copy(update=updates)

    def _elapsed_ms(self, started: float) -> float:
        return (self._timer() - started) * 1000

    async def _report_degraded(self, error: DealSearchError) -> None:
        """Report a failure the request recovered from."""
        if not self.config.monitoring.error_reporting:
            logger.warning(error.message)
            return
        try:
            await report_error(error)
        except Exception as e:
            logger.warning(f"{error.message} (reporting failed: {e})")

    async def _analytics_failed(self, operation: str, query: Optional[str], cause: Exception) -> None:
        await self._report_degraded(
            AnalyticsError(
                f"Failed to {operation}: {cause}",
                context=ErrorContext(operation=operation, component="analytics", query=query),
                cause=cause,
            )
        )

    async def _record_search(
        self, spec: QuerySpec, results: SearchResults, response_time: float, source: str
    ) -> None:
        if not self.config.analytics.enabled:
            return
        try:
            await self.analytics.record_search(spec, results, response_time, source)
        except Exception as e:
            await self._analytics_failed("record search", spec.query, e)

    async def _record_error(
        self, spec: Optional[QuerySpec], error: Exception, response_time: float
    ) -> None:
        if not self.config.analytics.enabled:
            return
        try:
            await self.analytics.record_error(spec, error, response_time)
        except Exception as e:
            await self._analytics_failed("record error", spec.query if spec else None, e)

    async def record_interaction(
        self, query: str, result_type: str, result_id: Any, interaction_type: str = "click"
    ) -> None:
        if not self.config.analytics.enabled:
            return
        try:
            await self.analytics.record_interaction(query, result_type, result_id, interaction_type)
        except Exception as e:
            await self._analytics_failed("record interaction", query, e)

    async def get_suggestions(self, partial_query: str, limit: Optional[int] = None) -> List[str]:
        try:
            return await self.suggestions.get_suggestions(partial_query, limit)
        except Exception as e:
            logger.warning(f"Suggestions failed for '{partial_query}': {e}")
            return []

    async def get_analytics(self, timeframe: str = "24h") -> AnalyticsReport:
        return await self.analytics.get_analytics(timeframe)

    async def get_real_time_metrics(self) -> RealTimeMetrics:
        return await self.analytics.get_real_time_metrics()

    async def clear_cache(self) -> int:
        return await self.cache.clear()

    async def invalidate_pattern(self, pattern: str) -> int:
        return await self.cache.invalidate_pattern(pattern)

    async def cache_stats(self) -> Dict[str, Any]:
        return await self.cache.get_stats()

    async def warm_cache(self, queries: Iterable[QueryParams]) -> int:
        """Pre-compute and cache results for ``queries``."""
        specs = []
        for params in queries:
            try:
                specs.append(self.normalize_query(params))
            except ValidationError as e:
                logger.warning(f"Skipping invalid warm-up query: {e.message}")
        return await self.cache.warm_up(specs, self._compute)
