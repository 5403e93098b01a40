"""
Repository helpers for rank suggestions.

Replacing a viewer's suggestions is one transaction guarded by a
transaction-scoped advisory lock on the viewer id, so two workers
regenerating the same viewer can never interleave delete and insert.
"""

import json
from collections.abc import Sequence
from datetime import datetime

import psycopg

from feedrank.db.helpers import (
    DatabaseError,
    execute_query,
    execute_transaction,
    fetch_all,
    fetch_one,
)
from feedrank.db.pool import get_db_transaction
from feedrank.features.friend_ranking.domain.models import (
    RankSuggestion,
    SuggestionReason,
    SuggestionStatus,
)
from feedrank.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

VIEWER_LOCK_QUERY = "SELECT pg_advisory_xact_lock(hashtext(%s))"

_SUGGESTION_COLUMNS = """
    id, user_id, friend_id, current_rank, suggested_rank, confidence,
    primary_reason, justification_message, supporting_metrics, status,
    created_at, expires_at
"""


class SuggestionNotFoundError(Exception):
    """The suggestion does not exist, is not pending, or has expired."""


def row_to_suggestion(row: dict) -> RankSuggestion:
    metrics = row.get("supporting_metrics") or {}
    if isinstance(metrics, str):
        metrics = json.loads(metrics)
    return RankSuggestion(
        id=str(row["id"]),
        viewer_id=row["user_id"],
        connection_id=row["friend_id"],
        current_rank=row["current_rank"],
        suggested_rank=row["suggested_rank"],
        confidence=float(row["confidence"]),
        primary_reason=SuggestionReason(row["primary_reason"]),
        justification=row["justification_message"],
        supporting_metrics=metrics,
        status=SuggestionStatus(row["status"]),
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


class RankSuggestionRepository:
    @staticmethod
    async def replace_pending_suggestions(
        viewer_id: str, suggestions: Sequence[RankSuggestion]
    ) -> None:
        """Atomically drop the viewer's pending suggestions and insert the new batch."""
        queries: list[tuple] = [
            (VIEWER_LOCK_QUERY, (viewer_id,)),
            (
                "DELETE FROM friend_ranking_suggestions WHERE user_id = %s AND status = %s",
                (viewer_id, SuggestionStatus.PENDING.value),
            ),
        ]

        insert_query = f"""
            INSERT INTO friend_ranking_suggestions ({_SUGGESTION_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s, %s)
        """
        for suggestion in suggestions:
            if suggestion.viewer_id != viewer_id:
                raise ValueError("Suggestion batch mixes viewers")
            queries.append(
                (
                    insert_query,
                    (
                        suggestion.id,
                        suggestion.viewer_id,
                        suggestion.connection_id,
                        suggestion.current_rank,
                        suggestion.suggested_rank,
                        suggestion.confidence,
                        suggestion.primary_reason.value,
                        suggestion.justification,
                        json.dumps(suggestion.supporting_metrics),
                        suggestion.status.value,
                        suggestion.created_at,
                        suggestion.expires_at,
                    ),
                )
            )

        await execute_transaction(queries)
        logger.info(
            "Rank suggestions replaced atomically",
            viewer_id=viewer_id,
            suggestion_count=len(suggestions),
        )

    @staticmethod
    async def fetch_live_suggestions(viewer_id: str, now: datetime) -> list[RankSuggestion]:
        rows = await fetch_all(
            f"""
            SELECT {_SUGGESTION_COLUMNS}
            FROM friend_ranking_suggestions
            WHERE user_id = %s
              AND status = %s
              AND expires_at > %s
            ORDER BY confidence DESC, suggested_rank ASC, friend_id ASC
            """,
            (viewer_id, SuggestionStatus.PENDING.value, now),
        )
        return [row_to_suggestion(row) for row in rows]

    @staticmethod
    async def accept_suggestion(viewer_id: str, suggestion_id: str, now: datetime) -> RankSuggestion:
        """
        Apply a live suggestion to the connection list.

        The connection currently holding the suggested rank takes the
        accepted connection's old rank so ranks stay unique per viewer.
        """
        try:
            async with await get_db_transaction() as conn:
                await conn.execute(VIEWER_LOCK_QUERY, (viewer_id,))
                row = await fetch_one(
                    f"""
                    SELECT {_SUGGESTION_COLUMNS}
                    FROM friend_ranking_suggestions
                    WHERE id = %s AND user_id = %s AND status = %s AND expires_at > %s
                    FOR UPDATE
                    """,
                    (suggestion_id, viewer_id, SuggestionStatus.PENDING.value, now),
                    connection=conn,
                )
                if not row:
                    raise SuggestionNotFoundError(suggestion_id)
                suggestion = row_to_suggestion(row)

                current = await fetch_one(
                    "SELECT rank FROM friendships WHERE user_id = %s AND friend_id = %s",
                    (viewer_id, suggestion.connection_id),
                    connection=conn,
                )
                old_rank = current["rank"] if current else suggestion.current_rank

                await conn.execute(
                    """
                    UPDATE friendships
                    SET rank = CASE WHEN friend_id = %s THEN %s ELSE %s END,
                        updated_at = %s
                    WHERE user_id = %s
                      AND (friend_id = %s OR rank = %s)
                    """,
                    (
                        suggestion.connection_id,
                        suggestion.suggested_rank,
                        old_rank,
                        now,
                        viewer_id,
                        suggestion.connection_id,
                        suggestion.suggested_rank,
                    ),
                )
                await conn.execute(
                    "UPDATE friend_ranking_suggestions SET status = %s WHERE id = %s",
                    (SuggestionStatus.ACCEPTED.value, suggestion_id),
                )
        except psycopg.Error as e:
            logger.error("Accept suggestion failed", suggestion_id=suggestion_id, error=str(e))
            raise DatabaseError(f"Accept failed: {e}", operation="accept_suggestion") from e

        logger.info(
            "Rank suggestion accepted",
            viewer_id=viewer_id,
            connection_id=suggestion.connection_id,
            from_rank=old_rank,
            to_rank=suggestion.suggested_rank,
        )
        return suggestion

    @staticmethod
    async def dismiss_suggestion(viewer_id: str, suggestion_id: str, now: datetime) -> None:
        updated = await execute_query(
            """
            UPDATE friend_ranking_suggestions
            SET status = %s
            WHERE id = %s AND user_id = %s AND status = %s AND expires_at > %s
            """,
            (
                SuggestionStatus.DISMISSED.value,
                suggestion_id,
                viewer_id,
                SuggestionStatus.PENDING.value,
                now,
            ),
        )
        if updated == 0:
            raise SuggestionNotFoundError(suggestion_id)

    @staticmethod
    async def expire_stale_suggestions(now: datetime) -> int:
        return await execute_query(
            """
            UPDATE friend_ranking_suggestions
            SET status = %s
            WHERE status = %s AND expires_at <= %s
            """,
            (SuggestionStatus.EXPIRED.value, SuggestionStatus.PENDING.value, now),
        )
