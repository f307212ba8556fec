"""Query suggestions drawn from recorded search popularity."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from rapidfuzz.distance import Levenshtein

from ..config import SearchConfig, get_config_manager
from .analytics import MetricsAggregator

logger = logging.getLogger(__name__)

SUGGESTION_TIMEFRAME = "30d"
COMPLETION_SCORE = 6
CONTAINS_SCORE = 4


@dataclass
class Suggestion:
    text: str
    source: str
    score: int


class SuggestionProvider:
    """Suggests queries that other users searched for."""

    def __init__(self, analytics: MetricsAggregator, config: Optional[SearchConfig] = None):
        self.analytics = analytics
        self.config = config or get_config_manager().get_search_config()

    async def get_suggestions(self, partial_query: str, limit: Optional[int] = None) -> List[str]:
        if limit is None:
            limit = self.config.max_suggestions
        if limit <= 0 or not isinstance(partial_query, str):
            return []

        partial = partial_query.lower().strip()
        if len(partial) < self.config.min_suggestion_length:
            return []

        popular = await self.analytics.get_popular_queries(SUGGESTION_TIMEFRAME, limit=limit * 5)

        suggestions: List[Suggestion] = []
        seen = set()
        for entry in popular:
            if entry.query == partial or entry.query in seen:
                continue
            if entry.query.startswith(partial):
                suggestions.append(Suggestion(entry.query, "popular_completion", COMPLETION_SCORE))
            elif partial in entry.query:
                suggestions.append(Suggestion(entry.query, "popular_contains", CONTAINS_SCORE))
            else:
                continue
            seen.add(entry.query)

        ranked = self.rank_suggestions(suggestions, partial)
        logger.debug(f"{len(ranked)} suggestions for '{partial}'")
        return [suggestion.text for suggestion in ranked[:limit]]

    def rank_suggestions(self, suggestions: List[Suggestion], query: str) -> List[Suggestion]:
        """Order by score, then edit distance to the query, then length."""
        return sorted(
            suggestions,
            key=lambda suggestion: (
                -suggestion.score,
                Levenshtein.distance(query, suggestion.text),
                len(suggestion.text),
            ),
        )
