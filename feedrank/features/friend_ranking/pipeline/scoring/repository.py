"""
Repository helpers for persisting connection score records.
"""

import json
from collections.abc import Iterable

from feedrank.db.helpers import execute_transaction, fetch_all
from feedrank.features.friend_ranking.domain.models import ScoreRecord
from feedrank.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ScoreRecordRepository:
    """Writes one analytics row per (viewer, connection), overwriting the previous cycle."""

    @staticmethod
    async def upsert_score_records(records: Iterable[ScoreRecord]) -> None:
        records_list = list(records)
        if not records_list:
            return

        query = """
            INSERT INTO user_interaction_analytics (
                user_id, friend_id, interaction_counts, total_interaction_time,
                content_interactions, average_response_time, last_interaction_at,
                interaction_score, consistency_score, engagement_score, overall_score,
                current_rank, period_start, period_end, updated_at
            )
            VALUES (%s, %s, %s::jsonb, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, friend_id) DO UPDATE SET
                interaction_counts = EXCLUDED.interaction_counts,
                total_interaction_time = EXCLUDED.total_interaction_time,
                content_interactions = EXCLUDED.content_interactions,
                average_response_time = EXCLUDED.average_response_time,
                last_interaction_at = EXCLUDED.last_interaction_at,
                interaction_score = EXCLUDED.interaction_score,
                consistency_score = EXCLUDED.consistency_score,
                engagement_score = EXCLUDED.engagement_score,
                overall_score = EXCLUDED.overall_score,
                current_rank = EXCLUDED.current_rank,
                period_start = EXCLUDED.period_start,
                period_end = EXCLUDED.period_end,
                updated_at = EXCLUDED.updated_at
        """

        queries = []
        for record in records_list:
            tally = record.tally
            queries.append(
                (
                    query,
                    (
                        record.viewer_id,
                        record.connection_id,
                        json.dumps({kind.value: count for kind, count in tally.counts.items()}),
                        tally.time_in_content_seconds,
                        tally.content_interactions,
                        tally.average_response_seconds,
                        tally.last_interaction_at,
                        record.interaction_score,
                        record.consistency_score,
                        record.engagement_score,
                        record.overall_score,
                        record.current_rank,
                        tally.window_start,
                        tally.window_end,
                        record.computed_at,
                    ),
                )
            )

        await execute_transaction(queries)
        logger.debug("Batch upserted score records", record_count=len(records_list))

    @staticmethod
    async def fetch_overall_scores(viewer_id: str) -> dict[str, float]:
        rows = await fetch_all(
            """
            SELECT friend_id, overall_score
            FROM user_interaction_analytics
            WHERE user_id = %s
            """,
            (viewer_id,),
        )
        return {row["friend_id"]: float(row["overall_score"] or 0.0) for row in rows}
