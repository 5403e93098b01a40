"""
feedrank - ranking and curation core of a social feed.

Two feature slices live under ``feedrank.features``: ``friend_ranking``
scores how close a viewer is to each connection and proposes rank changes,
and ``feed_curation`` assembles paginated, diversity-constrained feed pages.
"""

__version__ = "0.1.0"
