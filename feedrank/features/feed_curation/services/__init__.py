"""
Service layer for feed curation.
"""

from .feed_service import FeedCurationService, feed_curation_service, parse_candidates

__all__ = ["FeedCurationService", "feed_curation_service", "parse_candidates"]
