"""
Scoring package for friend ranking.

Turns tallies into score records and persists them per pair.
"""

from .service import ScoringService, scoring_service

__all__ = ["ScoringService", "scoring_service"]
