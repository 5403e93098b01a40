"""
Rank suggestion package.

Compares computed closeness with manual ranks and manages the lifecycle of
the resulting suggestions.
"""

from .service import RankSuggestionService, filter_live_suggestions, rank_suggestion_service

__all__ = ["RankSuggestionService", "filter_live_suggestions", "rank_suggestion_service"]
