"""
Aggregation package for friend ranking.

Reads every interaction source for a pair and folds it into one tally.
"""

from .service import InteractionAggregationService, interaction_aggregation_service

__all__ = ["InteractionAggregationService", "interaction_aggregation_service"]
