"""
Engagement prediction package.
"""

from .service import EngagementPredictionService, EngagementPredictor, engagement_prediction_service

__all__ = ["EngagementPredictor", "EngagementPredictionService", "engagement_prediction_service"]
