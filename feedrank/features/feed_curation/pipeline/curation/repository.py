"""
Repository helpers for the per-viewer inputs of curation.
"""

from feedrank.db.helpers import fetch_all, with_db_retry
from feedrank.features.feed_curation.domain.models import ContentKind, ViewerAffinity
from feedrank.features.friend_ranking.pipeline.scoring.repository import ScoreRecordRepository


class CurationInputRepository:
    @staticmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_connection_ranks(viewer_id: str) -> dict[str, int]:
        rows = await fetch_all(
            """
            SELECT friend_id, rank
            FROM friendships
            WHERE user_id = %s
              AND status = 'accepted'
            """,
            (viewer_id,),
        )
        return {row["friend_id"]: int(row["rank"]) for row in rows if row["rank"] is not None}

    @staticmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_viewer_affinity(viewer_id: str, max_score: float = 100.0) -> ViewerAffinity:
        """
        Kind preference is the viewer's time per content kind relative to their
        most-watched kind; author affinity is the stored overall score scaled to 0..1.
        """
        rows = await fetch_all(
            """
            SELECT content_type, COALESCE(SUM(duration_seconds), 0) AS total_seconds
            FROM content_engagements
            WHERE user_id = %s
            GROUP BY content_type
            """,
            (viewer_id,),
        )
        seconds: dict[ContentKind, float] = {}
        for row in rows:
            try:
                seconds[ContentKind(row["content_type"])] = float(row["total_seconds"])
            except ValueError:
                continue
        peak = max(seconds.values(), default=0.0)
        kind_preferences = (
            {kind: value / peak for kind, value in seconds.items()} if peak > 0 else {}
        )

        scores = await ScoreRecordRepository.fetch_overall_scores(viewer_id)
        author_affinity = {
            author_id: min(1.0, max(0.0, score / max_score)) for author_id, score in scores.items()
        }
        return ViewerAffinity(kind_preferences=kind_preferences, author_affinity=author_affinity)
