"""
Search analytics: event recording, a sliding real-time window, timeframe
aggregates and periodic draining of recorded events to an external sink.
"""

import asyncio
import logging
import math
import secrets
import time
from abc import ABC, abstractmethod
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from ..config import AnalyticsConfig, get_config_manager
from ..errors import AnalyticsError, ErrorContext, error_code, report_error
from ..lifecycle import Lifecycle, start_ticker, stop_ticker
from ..models import (
    AnalyticsPeriod,
    AnalyticsReport,
    ConversionMetrics,
    ErrorBreakdown,
    ErrorEvent,
    ErrorStats,
    Event,
    InteractionEvent,
    PerformanceMetrics,
    QueryCount,
    QuerySpec,
    RealTimeMetrics,
    ResultTypeCount,
    SearchEvent,
    SearchResults,
    SearchStats,
    TypeCount,
)

logger = logging.getLogger(__name__)

TIMEFRAMES = {
    "1h": 60 * 60,
    "24h": 24 * 60 * 60,
    "7d": 7 * 24 * 60 * 60,
    "30d": 30 * 24 * 60 * 60,
}
DEFAULT_TIMEFRAME = "24h"
REAL_TIME_RATE_WINDOW = 60.0


def parse_timeframe(timeframe: Optional[str], now: float) -> Tuple[float, float]:
    """Map a relative timeframe token to an absolute ``[start, end)`` interval."""
    span = TIMEFRAMES.get(timeframe or DEFAULT_TIMEFRAME, TIMEFRAMES[DEFAULT_TIMEFRAME])
    return now - span, now


def calculate_percentile(sorted_values: Sequence[float], percentile: float) -> float:
    """Nearest-rank percentile of an ascending sequence."""
    if not sorted_values:
        return 0.0
    index = math.ceil((percentile / 100) * len(sorted_values)) - 1
    return sorted_values[max(0, index)]


def _percentage(count: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(count / total * 100, 2)


class EventSink(ABC):
    """Destination for drained analytics events."""

    @abstractmethod
    async def write_events(self, events: List[Event]) -> None:
        pass


class LoggingEventSink(EventSink):
    """Sink that only logs batch sizes."""

    async def write_events(self, events: List[Event]) -> None:
        logger.info(f"Flushing {len(events)} analytics events to storage")


class MetricsAggregator(Lifecycle):
    """
    Records search activity and serves real-time and historical views.

    Recorded events go to two places: a flush buffer drained to the sink,
    and a history kept for the retention period to answer timeframe
    queries. A deque of recent events backs the real-time view and is
    trimmed to the real-time window on every write.
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        sink: Optional[EventSink] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or get_config_manager().get_analytics_config()
        self.sink = sink or LoggingEventSink()
        self._clock = clock
        self._lock = asyncio.Lock()

        self._buffer: Dict[str, Event] = {}
        self._history: Deque[Event] = deque()
        self._real_time: Deque[Event] = deque()

        self._flush_task: Optional[asyncio.Task] = None
        self._initialized = False

    async def initialize(self) -> None:
        """Start periodic flushing."""
        if self._initialized:
            return

        self._flush_task = start_ticker(
            "analytics-flush", self.config.flush_interval_seconds, self.flush
        )
        self._initialized = True
        logger.info(
            f"Metrics aggregator initialized: flush_interval={self.config.flush_interval_seconds}s"
        )

    async def shutdown(self) -> None:
        """Stop periodic flushing and drain what is left."""
        if not self._initialized:
            return

        await stop_ticker(self._flush_task)
        self._flush_task = None
        self._initialized = False
        await self.flush()
        logger.info("Metrics aggregator shut down")

    # Recording

    async def record_search(
        self,
        spec: QuerySpec,
        results: Optional[SearchResults],
        response_time: float,
        source: str = "database_hit",
    ) -> SearchEvent:
        event = SearchEvent(
            timestamp=self._clock(),
            query=spec.query,
            type=spec.type,
            filters=spec.model_dump(exclude={"query"}),
            results_count=results.total_results if results is not None else 0,
            response_time=response_time,
            source=source,
        )
        return await self._record(event)

    async def record_error(
        self, spec: Optional[QuerySpec], error: BaseException, response_time: float
    ) -> ErrorEvent:
        event = ErrorEvent(
            timestamp=self._clock(),
            query=spec.query if spec is not None else "",
            type=spec.type if spec is not None else "all",
            error_message=str(error),
            error_code=error_code(error),
            response_time=response_time,
        )
        return await self._record(event)

    async def record_interaction(
        self,
        query: str,
        result_type: str,
        result_id: Any,
        interaction_type: str = "click",
        properties: Optional[Dict[str, Any]] = None,
    ) -> InteractionEvent:
        event = InteractionEvent(
            timestamp=self._clock(),
            query=query or "",
            result_type=result_type or "unknown",
            result_id=str(result_id),
            interaction_type=interaction_type,
            properties=properties or {},
        )
        return await self._record(event)

    async def _record(self, event: Event) -> Event:
        event.event_id = f"{event.kind}_{int(event.timestamp * 1000)}_{secrets.token_hex(6)}"

        async with self._lock:
            self._buffer[event.event_id] = event
            self._history.append(event)
            self._prune_history(event.timestamp)

            if self.config.enable_real_time_tracking:
                self._real_time.append(event)
                self._trim_real_time(event.timestamp)

        return event

    def _trim_real_time(self, now: float) -> None:
        window = self.config.real_time_window_seconds
        while self._real_time and now - self._real_time[0].timestamp >= window:
            self._real_time.popleft()

    def _prune_history(self, now: float) -> None:
        cutoff = now - self.config.retention_days * 24 * 60 * 60
        while self._history and self._history[0].timestamp < cutoff:
            self._history.popleft()

        # Unflushed events past retention are dropped as well; the buffer is in record order
        expired_ids = []
        for event_id, event in self._buffer.items():
            if event.timestamp >= cutoff:
                break
            expired_ids.append(event_id)
        for event_id in expired_ids:
            del self._buffer[event_id]
        if expired_ids:
            logger.warning(
                f"Dropped {len(expired_ids)} unflushed analytics events older than "
                f"{self.config.retention_days} days"
            )

    # Flushing

    async def flush(self) -> int:
        """Drain buffered events to the sink. Returns the number written.

        The buffer is copied under the lock and only the copied entries are
        removed afterwards, so events recorded during the write are kept for
        the next pass. Entries stay buffered if the sink fails.
        """
        async with self._lock:
            pending = list(self._buffer.items())

        if not pending:
            return 0

        written = 0
        batch_size = self.config.batch_size
        for start in range(0, len(pending), batch_size):
            batch = pending[start : start + batch_size]
            try:
                await self.sink.write_events([event for _, event in batch])
            except Exception as e:
                logger.error(f"Error flushing analytics events: {e}")
                break

            async with self._lock:
                for key, _ in batch:
                    self._buffer.pop(key, None)
            written += len(batch)

        if written:
            logger.debug(f"Flushed {written} analytics events")
        return written

    @property
    def pending_count(self) -> int:
        return len(self._buffer)

    # Real-time view

    async def get_real_time_metrics(self) -> RealTimeMetrics:
        async with self._lock:
            now = self._clock()
            recent = [
                event
                for event in self._real_time
                if now - event.timestamp < REAL_TIME_RATE_WINDOW
            ]

        counts = Counter(event.kind for event in recent)
        searches_per_minute = counts["search"]

        current_load = "low"
        if searches_per_minute > self.config.high_load_threshold:
            current_load = "high"
        elif searches_per_minute > self.config.medium_load_threshold:
            current_load = "medium"

        return RealTimeMetrics(
            searches_per_minute=searches_per_minute,
            errors_per_minute=counts["error"],
            interactions_per_minute=counts["interaction"],
            current_load=current_load,
        )

    # Historical view

    async def get_analytics(self, timeframe: str = DEFAULT_TIMEFRAME) -> AnalyticsReport:
        """Aggregate analytics for ``timeframe``. Never raises."""
        try:
            now = self._clock()
            start, end = parse_timeframe(timeframe, now)
            events = await self._events_between(start, end)

            return AnalyticsReport(
                timeframe=timeframe,
                period=AnalyticsPeriod(
                    start_date=datetime.fromtimestamp(start, tz=timezone.utc),
                    end_date=datetime.fromtimestamp(end, tz=timezone.utc),
                ),
                search_stats=self._search_stats(events),
                popular_queries=self._popular_queries(events, self.config.popular_queries_limit),
                performance=self._performance_metrics(events),
                errors=self._error_stats(events),
                conversions=self._conversion_metrics(events),
                real_time=await self.get_real_time_metrics(),
            )
        except Exception as e:
            error = AnalyticsError(
                f"Error getting analytics: {e}",
                context=ErrorContext(
                    operation="get_analytics",
                    component="metrics_aggregator",
                    additional_data={"timeframe": timeframe},
                ),
                cause=e,
            )
            try:
                await report_error(error)
            except Exception as report_failure:
                logger.error(f"{error.message} (reporting failed: {report_failure})")
            return AnalyticsReport(timeframe=timeframe)

    async def get_popular_queries(
        self, timeframe: str = DEFAULT_TIMEFRAME, limit: Optional[int] = None
    ) -> List[QueryCount]:
        start, end = parse_timeframe(timeframe, self._clock())
        events = await self._events_between(start, end)
        if limit is None:
            limit = self.config.popular_queries_limit
        return self._popular_queries(events, limit)

    async def get_performance_metrics(self, timeframe: str = DEFAULT_TIMEFRAME) -> PerformanceMetrics:
        start, end = parse_timeframe(timeframe, self._clock())
        events = await self._events_between(start, end)
        return self._performance_metrics(events)

    async def _events_between(self, start: float, end: float) -> List[Event]:
        async with self._lock:
            return [event for event in self._history if start <= event.timestamp < end]

    def _search_stats(self, events: Sequence[Event]) -> SearchStats:
        searches = [event for event in events if isinstance(event, SearchEvent)]
        total = len(searches)
        if total == 0:
            return SearchStats()

        cache_hits = sum(1 for event in searches if event.source == "cache_hit")
        type_counts = Counter(event.type or "all" for event in searches)

        return SearchStats(
            total_searches=total,
            unique_queries=len({event.query for event in searches}),
            avg_response_time=round(sum(event.response_time for event in searches) / total),
            cache_hit_rate=_percentage(cache_hits, total),
            search_types=[
                TypeCount(type=search_type, count=count, percentage=_percentage(count, total))
                for search_type, count in type_counts.items()
            ],
        )

    def _popular_queries(self, events: Sequence[Event], limit: int) -> List[QueryCount]:
        queries = [
            event.query.lower().strip()
            for event in events
            if isinstance(event, SearchEvent) and event.query and event.query.strip()
        ]
        counts = Counter(queries)
        total = len(queries)

        # most_common keeps first-seen order among equal counts
        return [
            QueryCount(query=query, count=count, percentage=_percentage(count, total))
            for query, count in counts.most_common(limit)
        ]

    def _performance_metrics(self, events: Sequence[Event]) -> PerformanceMetrics:
        timed = [event for event in events if isinstance(event, (SearchEvent, ErrorEvent))]
        if not timed:
            return PerformanceMetrics()

        response_times = sorted(event.response_time for event in timed)
        fastest = min(timed, key=lambda event: event.response_time)
        slowest = max(timed, key=lambda event: event.response_time)

        return PerformanceMetrics(
            avg_response_time=round(sum(response_times) / len(response_times)),
            median_response_time=calculate_percentile(response_times, 50),
            p95_response_time=calculate_percentile(response_times, 95),
            p99_response_time=calculate_percentile(response_times, 99),
            fastest_query=fastest,
            slowest_query=slowest,
        )

    def _error_stats(self, events: Sequence[Event]) -> ErrorStats:
        errors = [event for event in events if isinstance(event, ErrorEvent)]
        if not errors:
            return ErrorStats()

        counts = Counter(event.error_code or "UNKNOWN" for event in errors)
        return ErrorStats(
            total_errors=len(errors),
            error_rate=_percentage(len(errors), len(events)),
            error_breakdown=[
                ErrorBreakdown(error_type=code, count=count, percentage=_percentage(count, len(errors)))
                for code, count in counts.items()
            ],
        )

    def _conversion_metrics(self, events: Sequence[Event]) -> ConversionMetrics:
        interactions = [event for event in events if isinstance(event, InteractionEvent)]
        search_count = sum(1 for event in events if isinstance(event, SearchEvent))

        counts = Counter(event.result_type or "unknown" for event in interactions)
        return ConversionMetrics(
            total_interactions=len(interactions),
            click_through_rate=_percentage(len(interactions), search_count),
            result_type_breakdown=[
                ResultTypeCount(
                    result_type=result_type,
                    clicks=count,
                    percentage=_percentage(count, len(interactions)),
                )
                for result_type, count in counts.items()
            ],
        )
