"""Data models for the deals search subsystem."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

ENTITY_TYPES = ("deals", "coupons", "users", "companies", "categories")

EntityFilter = Literal["all", "deals", "coupons", "users", "companies", "categories"]
SortMode = Literal["relevance", "newest", "oldest", "popular", "price_low", "price_high", "discount"]


class QuerySpec(BaseModel):
    """A normalized search request.

    Optional string filters treat empty strings as absent and tags are
    deduplicated and sorted, so logically equivalent requests compare equal.
    """

    model_config = ConfigDict(frozen=True)

    query: str = ""
    type: EntityFilter = "all"
    category: Optional[str] = None
    company: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_discount: Optional[float] = None
    max_discount: Optional[float] = None
    has_coupon: bool = False
    coupon_type: Optional[str] = None
    featured: bool = False
    sort: SortMode = "relevance"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)

    @field_validator("query", mode="before")
    @classmethod
    def _strip_query(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("category", "company", "coupon_type", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("min_price", "max_price", "min_discount", "max_discount", mode="before")
    @classmethod
    def _blank_number_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("sort", mode="before")
    @classmethod
    def _default_sort(cls, value: Any) -> Any:
        return value or "relevance"

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple, set)):
            return sorted({str(tag).strip() for tag in value if str(tag).strip()})
        return value

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class SearchResults(BaseModel):
    """Per-entity-type result lists plus totals.

    Items are plain mappings as returned by the data layer; ranking reorders
    them without modifying their contents.
    """

    model_config = ConfigDict(extra="allow")

    deals: List[Dict[str, Any]] = Field(default_factory=list)
    coupons: List[Dict[str, Any]] = Field(default_factory=list)
    users: List[Dict[str, Any]] = Field(default_factory=list)
    companies: List[Dict[str, Any]] = Field(default_factory=list)
    categories: List[Dict[str, Any]] = Field(default_factory=list)
    total_deals: int = 0
    total_coupons: int = 0
    total_users: int = 0
    total_companies: int = 0
    total_categories: int = 0
    total_results: int = 0
    query: str = ""
    suggestions: List[str] = Field(default_factory=list)


# Analytics events


class AnalyticsEvent(BaseModel):
    """Base for recorded analytics events."""

    event_id: str = ""
    timestamp: float
    properties: Dict[str, Any] = Field(default_factory=dict)


class SearchEvent(AnalyticsEvent):
    kind: Literal["search"] = "search"
    query: str = ""
    type: str = "all"
    filters: Dict[str, Any] = Field(default_factory=dict)
    results_count: int = 0
    response_time: float = 0.0
    source: str = "database_hit"  # 'cache_hit' or 'database_hit'


class ErrorEvent(AnalyticsEvent):
    kind: Literal["error"] = "error"
    query: str = ""
    type: str = "all"
    error_message: str = ""
    error_code: str = "UNKNOWN"
    response_time: float = 0.0


class InteractionEvent(AnalyticsEvent):
    kind: Literal["interaction"] = "interaction"
    query: str = ""
    result_type: str = "unknown"
    result_id: str = ""
    interaction_type: str = "click"  # 'click', 'view', 'share', etc.


Event = Union[SearchEvent, ErrorEvent, InteractionEvent]


# Analytics reports


class TypeCount(BaseModel):
    type: str
    count: int
    percentage: float


class SearchStats(BaseModel):
    total_searches: int = 0
    unique_queries: int = 0
    avg_response_time: int = 0
    cache_hit_rate: float = 0.0
    search_types: List[TypeCount] = Field(default_factory=list)


class QueryCount(BaseModel):
    query: str
    count: int
    percentage: float


class PerformanceMetrics(BaseModel):
    avg_response_time: int = 0
    median_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    fastest_query: Optional[Union[SearchEvent, ErrorEvent]] = None
    slowest_query: Optional[Union[SearchEvent, ErrorEvent]] = None


class ErrorBreakdown(BaseModel):
    error_type: str
    count: int
    percentage: float


class ErrorStats(BaseModel):
    total_errors: int = 0
    error_rate: float = 0.0
    error_breakdown: List[ErrorBreakdown] = Field(default_factory=list)


class ResultTypeCount(BaseModel):
    result_type: str
    clicks: int
    percentage: float


class ConversionMetrics(BaseModel):
    total_interactions: int = 0
    click_through_rate: float = 0.0
    result_type_breakdown: List[ResultTypeCount] = Field(default_factory=list)


class RealTimeMetrics(BaseModel):
    searches_per_minute: int = 0
    errors_per_minute: int = 0
    interactions_per_minute: int = 0
    current_load: Literal["low", "medium", "high"] = "low"


class AnalyticsPeriod(BaseModel):
    start_date: datetime
    end_date: datetime


class AnalyticsReport(BaseModel):
    """Aggregated analytics for a timeframe. All-zero by default."""

    timeframe: str = "24h"
    period: Optional[AnalyticsPeriod] = None
    search_stats: SearchStats = Field(default_factory=SearchStats)
    popular_queries: List[QueryCount] = Field(default_factory=list)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    errors: ErrorStats = Field(default_factory=ErrorStats)
    conversions: ConversionMetrics = Field(default_factory=ConversionMetrics)
    real_time: RealTimeMetrics = Field(default_factory=RealTimeMetrics)
