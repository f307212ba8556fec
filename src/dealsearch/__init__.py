"""Result caching, relevance ranking and analytics for marketplace search."""

from .config import ApplicationConfig, get_config, get_config_manager
from .errors import DealSearchError, FetchError, ValidationError
from .models import AnalyticsReport, QuerySpec, RealTimeMetrics, SearchResults
from .search_engine import SearchEngine

__version__ = "1.0.0"

__all__ = [
    "ApplicationConfig",
    "AnalyticsReport",
    "DealSearchError",
    "FetchError",
    "QuerySpec",
    "RealTimeMetrics",
    "SearchEngine",
    "SearchResults",
    "ValidationError",
    "get_config",
    "get_config_manager",
]
