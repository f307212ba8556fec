"""
Relevance ranking for multi-entity search results.

Results are either ordered by an explicit sort mode or by a relevance score:
a weighted sum of text relevance, popularity, recency and engagement,
multiplied by boost and penalty factors. Scores only exist while ranking and
are never written onto the returned items.
"""

import logging
import math
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..config import RankingConfig, get_config_manager
from ..models import ENTITY_TYPES, QuerySpec, SearchResults

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 60 * 60 * 24
SECONDS_PER_MONTH = SECONDS_PER_DAY * 30

# Text match points, highest first
PHRASE_MATCH_POINTS = 100
WORD_BOUNDARY_POINTS = 40
TOKEN_MATCH_POINTS = 20
PREFIX_MATCH_POINTS = 10

DEAL_TEXT_FIELDS = ["title", "description", "merchant"]
COUPON_TEXT_FIELDS = ["title", "description", "coupon_code"]
USER_TEXT_FIELDS = ["handle", "display_name", "first_name", "last_name", "bio"]
NAME_FIELDS = ["name"]

STAFF_ROLES = {"admin", "moderator"}

Item = Mapping[str, Any]
SortRule = Tuple[Callable[[Item], float], bool]


@dataclass(frozen=True)
class ScoredItem:
    """An item paired with its relevance score for the duration of a ranking pass."""

    item: Item
    score: float


def _to_number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return 0.0
    else:
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _parse_timestamp(value: Any) -> Optional[float]:
    """Parse an ISO string, datetime or epoch number into epoch seconds."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, datetime):
            moment = value
        elif isinstance(value, (int, float)):
            # Epoch milliseconds are common in JSON payloads
            return float(value) / 1000 if value > 1e12 else float(value)
        elif isinstance(value, str) and value.strip():
            moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        else:
            return None
    except (ValueError, OverflowError):
        return None

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def _get_nested(item: Any, path: str) -> Any:
    current = item
    for key in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def _numeric_key(field: str) -> Callable[[Item], float]:
    return lambda item: _to_number(_get_nested(item, field))


def _timestamp_key(missing: float) -> Callable[[Item], float]:
    def key(item: Item) -> float:
        timestamp = _parse_timestamp(item.get("created_at"))
        return missing if timestamp is None else timestamp

    return key


def _build_sort_table() -> Dict[Tuple[str, str], SortRule]:
    table: Dict[Tuple[str, str], SortRule] = {}
    for entity_type in ENTITY_TYPES:
        # Items without a timestamp go last in both directions
        table[("newest", entity_type)] = (_timestamp_key(-math.inf), True)
        table[("oldest", entity_type)] = (_timestamp_key(math.inf), False)
        popularity_field = "karma" if entity_type == "users" else "views_count"
        table[("popular", entity_type)] = (_numeric_key(popularity_field), True)

    table[("price_low", "deals")] = (_numeric_key("price"), False)
    table[("price_high", "deals")] = (_numeric_key("price"), True)
    table[("discount", "deals")] = (_numeric_key("discount_percentage"), True)
    table[("discount", "coupons")] = (_numeric_key("discount_value"), True)
    return table


SORT_TABLE = _build_sort_table()


class RankingEngine:
    """Orders search results by explicit sort or computed relevance.

    Stateless per call apart from configuration, so a single instance may be
    shared between concurrent requests.
    """

    def __init__(
        self, config: Optional[RankingConfig] = None, clock: Callable[[], float] = time.time
    ):
        self.config = config or get_config_manager().get_ranking_config()
        self._clock = clock
        self._scorers: Dict[str, Callable[[Item, Any], float]] = {
            "deals": self.score_deal,
            "coupons": self.score_coupon,
            "users": self.score_user,
            "companies": self.score_company,
            "categories": self.score_category,
        }

    def rank_results(self, results: SearchResults, spec: QuerySpec) -> SearchResults:
        """Rank every entity list in ``results`` for ``spec``."""
        if spec.sort and spec.sort != "relevance":
            return self.apply_sort_order(results, spec.sort)

        updates = {
            entity_type: self.rank_items(getattr(results, entity_type), spec.query, entity_type)
            for entity_type in ENTITY_TYPES
        }
        return results.model_copy(update=updates)

    def apply_sort_order(self, results: SearchResults, sort: str) -> SearchResults:
        updates = {
            entity_type: self.sort_items(getattr(results, entity_type), sort, entity_type)
            for entity_type in ENTITY_TYPES
        }
        return results.model_copy(update=updates)

    def sort_items(self, items: Sequence[Item], sort: str, entity_type: str) -> List[Item]:
        """Sort by a field comparator. Unsupported combinations keep input order."""
        if not items:
            return list(items or [])

        rule = SORT_TABLE.get((sort, entity_type))
        if rule is None:
            return list(items)

        key, reverse = rule
        return sorted(items, key=key, reverse=reverse)

    def rank_items(self, items: Sequence[Item], query: Any, entity_type: str) -> List[Item]:
        """Order items by descending relevance; ties keep their input order."""
        if not items:
            return list(items or [])

        scored = self.score_items(items, query, entity_type)
        scored.sort(key=lambda scored_item: scored_item.score, reverse=True)
        return [scored_item.item for scored_item in scored]

    def score_items(self, items: Sequence[Item], query: Any, entity_type: str) -> List[ScoredItem]:
        return [ScoredItem(item, self.score_item(item, query, entity_type)) for item in items]

    def score_item(self, item: Item, query: Any, entity_type: str) -> float:
        scorer = self._scorers.get(entity_type)
        if scorer is None or not isinstance(item, Mapping):
            return 0.0
        try:
            return scorer(item, query)
        except Exception as e:
            logger.warning(f"Scoring failed for {entity_type} item {item.get('id')}: {e}")
            return 0.0

    # Entity scorers

    def score_deal(self, deal: Item, query: Any) -> float:
        cfg = self.config
        views = _to_number(deal.get("views_count"))
        clicks = _to_number(deal.get("clicks_count"))

        score = self.text_relevance(deal, query, DEAL_TEXT_FIELDS) * cfg.text_relevance_weight
        score += (
            self.popularity_score(views, clicks, max_views=10000, max_clicks=1000)
            * cfg.popularity_weight
        )
        score += self.recency_score(deal.get("created_at")) * cfg.recency_weight
        score += self.engagement_score(views, clicks) * cfg.engagement_weight

        if self.has_exact_match(deal, query, ["title", "merchant"]):
            score *= cfg.exact_match_boost
        if self.has_title_match(deal, query):
            score *= cfg.title_match_boost
        if deal.get("is_featured"):
            score *= cfg.featured_boost
        if _get_nested(deal, "companies.is_verified"):
            score *= cfg.verified_boost
        if self.is_fresh_content(deal.get("created_at")):
            score *= cfg.fresh_content_boost

        if self.is_old_content(deal.get("created_at")):
            score *= cfg.old_content_penalty
        if self.has_low_engagement(views, clicks):
            score *= cfg.low_engagement_penalty

        return max(0.0, score)

    def score_coupon(self, coupon: Item, query: Any) -> float:
        cfg = self.config
        views = _to_number(coupon.get("views_count"))
        clicks = _to_number(coupon.get("clicks_count"))

        score = self.text_relevance(coupon, query, COUPON_TEXT_FIELDS) * cfg.text_relevance_weight
        score += (
            self.popularity_score(views, clicks, max_views=5000, max_clicks=500)
            * cfg.popularity_weight
        )
        score += self.recency_score(coupon.get("created_at")) * cfg.recency_weight

        # Redemption success rate stands in for engagement
        success_rate = min(1.0, max(0.0, _to_number(coupon.get("success_rate")) / 100))
        score += success_rate * cfg.engagement_weight

        if self.has_exact_match(coupon, query, ["title", "coupon_code"]):
            score *= cfg.exact_match_boost
        if coupon.get("is_featured"):
            score *= cfg.featured_boost
        if coupon.get("is_exclusive"):
            score *= cfg.exclusive_boost
        if _get_nested(coupon, "companies.is_verified"):
            score *= cfg.verified_boost
        if self.is_fresh_content(coupon.get("created_at")):
            score *= cfg.fresh_content_boost

        if self.is_expiring_soon(coupon.get("expires_at")):
            score *= cfg.expiring_soon_penalty

        return max(0.0, score)

    def score_user(self, user: Item, query: Any) -> float:
        cfg = self.config
        karma = _to_number(user.get("karma"))

        # Name matching dominates user search
        score = self.text_relevance(user, query, USER_TEXT_FIELDS) * 0.6
        score += min(1.0, max(0.0, karma / 1000)) * 0.3
        score += self._contribution_score(user, 50) * 0.1

        if self.has_exact_match(user, query, ["handle", "display_name"]):
            score *= cfg.exact_match_boost
        if user.get("role") in STAFF_ROLES:
            score *= cfg.staff_boost
        if karma > 500:
            score *= cfg.high_karma_boost

        return max(0.0, score)

    def score_company(self, company: Item, query: Any) -> float:
        cfg = self.config

        score = self.text_relevance(company, query, NAME_FIELDS) * 0.5
        score += self._contribution_score(company, 100) * 0.3

        if company.get("is_verified"):
            score *= cfg.verified_boost
        if self.has_exact_match(company, query, NAME_FIELDS):
            score *= cfg.exact_match_boost

        return max(0.0, score)

    def score_category(self, category: Item, query: Any) -> float:
        cfg = self.config

        score = self.text_relevance(category, query, NAME_FIELDS) * 0.6
        score += self._contribution_score(category, 200) * 0.4

        if self.has_exact_match(category, query, NAME_FIELDS):
            score *= cfg.exact_match_boost

        return max(0.0, score)

    # Features

    def text_relevance(self, item: Item, query: Any, fields: Sequence[str]) -> float:
        """Best per-field match score for ``query``, normalized to [0, 1].

        Points per field: the whole phrase contained, then for each query word
        a whole-word match, a plain substring match and the field starting
        with the word. The result is relative to the maximum attainable points.
        """
        if not isinstance(query, str) or not fields:
            return 0.0

        query_lower = query.lower().strip()
        query_words = query_lower.split()
        if not query_words:
            return 0.0

        max_points = PHRASE_MATCH_POINTS + len(query_words) * (
            WORD_BOUNDARY_POINTS + TOKEN_MATCH_POINTS + PREFIX_MATCH_POINTS
        )
        word_patterns = [re.compile(rf"\b{re.escape(word)}\b") for word in query_words]

        best = 0
        for field in fields:
            value = _get_nested(item, field)
            if value is None or value == "":
                continue

            field_text = str(value).lower()
            points = 0

            if query_lower in field_text:
                points += PHRASE_MATCH_POINTS

            for word, pattern in zip(query_words, word_patterns):
                if pattern.search(field_text):
                    points += WORD_BOUNDARY_POINTS
                if word in field_text:
                    points += TOKEN_MATCH_POINTS
                if field_text.startswith(word):
                    points += PREFIX_MATCH_POINTS

            best = max(best, points)

        return min(1.0, best / max_points)

    def popularity_score(
        self, views: float, clicks: float, max_views: float, max_clicks: float
    ) -> float:
        view_score = min(1.0, max(0.0, views / max_views))
        click_score = min(1.0, max(0.0, clicks / max_clicks))
        # Clicks weigh more than views
        return view_score * 0.3 + click_score * 0.7

    def recency_score(self, created_at: Any) -> float:
        age_months = self._age_months(created_at)
        if age_months is None:
            return 0.0
        return min(1.0, max(0.0, math.exp(-self.config.time_decay_factor * age_months)))

    def engagement_score(self, views: float, clicks: float) -> float:
        if views <= 0:
            return 0.0
        # A 10% click-through rate scores 1
        return min(1.0, max(0.0, (clicks / views) * 10))

    def has_exact_match(self, item: Item, query: Any, fields: Sequence[str]) -> bool:
        if not isinstance(query, str):
            return False
        query_lower = query.lower().strip()
        if not query_lower:
            return False

        for field in fields:
            value = _get_nested(item, field)
            if value is not None and str(value).lower().strip() == query_lower:
                return True
        return False

    def has_title_match(self, item: Item, query: Any) -> bool:
        title = item.get("title")
        if not title or not isinstance(query, str) or not query.strip():
            return False
        return query.lower().strip() in str(title).lower()

    def is_old_content(self, created_at: Any) -> bool:
        age_months = self._age_months(created_at)
        return age_months is not None and age_months > self.config.max_age_months

    def is_fresh_content(self, created_at: Any) -> bool:
        age_months = self._age_months(created_at)
        if age_months is None:
            return False
        return age_months * 30 < self.config.fresh_content_days

    def has_low_engagement(self, views: float, clicks: float) -> bool:
        return views < 10 or clicks == 0

    def is_expiring_soon(self, expires_at: Any) -> bool:
        expires = _parse_timestamp(expires_at)
        if expires is None:
            return False
        days_until_expiry = (expires - self._clock()) / SECONDS_PER_DAY
        return 0 < days_until_expiry < self.config.expiring_soon_days

    def _age_months(self, created_at: Any) -> Optional[float]:
        created = _parse_timestamp(created_at)
        if created is None:
            return None
        return max(0.0, (self._clock() - created) / SECONDS_PER_MONTH)

    def _contribution_score(self, item: Item, saturation: float) -> float:
        stats = item.get("stats") or {}
        if not isinstance(stats, Mapping):
            return 0.0
        total = _to_number(stats.get("deals_count")) + _to_number(stats.get("coupons_count"))
        return min(1.0, max(0.0, total / saturation))
