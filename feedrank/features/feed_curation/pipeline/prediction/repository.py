"""
Repository helpers for engagement history.

Author history is read from the author's most recent posts; kind history
comes from the externally maintained ``content_engagement_stats`` table.
A missing row means "no history" and the predictor falls back to baselines.
"""

from feedrank.db.helpers import fetch_all, fetch_one, with_db_retry
from feedrank.features.feed_curation.domain.models import ContentKind, EngagementHistory


class EngagementHistoryRepository:
    @staticmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_author_history(author_id: str, limit: int = 20) -> EngagementHistory | None:
        row = await fetch_one(
            """
            WITH recent AS (
                SELECT p.id
                FROM posts p
                WHERE p.user_id = %s
                ORDER BY p.created_at DESC
                LIMIT %s
            )
            SELECT
                COUNT(*) AS data_points,
                COALESCE(AVG((SELECT COUNT(*) FROM post_likes l WHERE l.post_id = r.id)), 0)
                    AS avg_reactions,
                COALESCE(AVG((SELECT COUNT(*) FROM comments c WHERE c.post_id = r.id)), 0)
                    AS avg_comments
            FROM recent r
            """,
            (author_id, limit),
        )
        if not row or not row["data_points"]:
            return None
        return EngagementHistory(
            avg_reactions=float(row["avg_reactions"]),
            avg_comments=float(row["avg_comments"]),
            data_points=int(row["data_points"]),
        )

    @staticmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_kind_histories() -> dict[ContentKind, EngagementHistory]:
        rows = await fetch_all(
            """
            SELECT content_kind, avg_reactions, avg_comments, sample_size
            FROM content_engagement_stats
            """
        )
        histories: dict[ContentKind, EngagementHistory] = {}
        for row in rows:
            try:
                kind = ContentKind(row["content_kind"])
            except ValueError:
                continue  # kinds this service does not curate
            sample_size = int(row["sample_size"] or 0)
            if sample_size <= 0:
                continue  # no samples yet; the predictor uses the kind baseline
            histories[kind] = EngagementHistory(
                avg_reactions=float(row["avg_reactions"] or 0),
                avg_comments=float(row["avg_comments"] or 0),
                data_points=sample_size,
            )
        return histories
