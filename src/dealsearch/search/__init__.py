"""
Search core components.

- cache: result cache with TTL and capacity-bounded eviction
- ranking: relevance scoring and explicit sort orders
- analytics: event recording, real-time and timeframe metrics
- suggestions: popular-query suggestions
"""

from .analytics import EventSink, LoggingEventSink, MetricsAggregator
from .cache import CacheEntry, CompressionStrategy, NoopCompression, ResultCache, build_cache_key
from .ranking import RankingEngine, ScoredItem
from .suggestions import SuggestionProvider

__all__ = [
    "ResultCache",
    "CacheEntry",
    "CompressionStrategy",
    "NoopCompression",
    "build_cache_key",
    "RankingEngine",
    "ScoredItem",
    "MetricsAggregator",
    "EventSink",
    "LoggingEventSink",
    "SuggestionProvider",
]
