"""
Repository helpers for interaction aggregation.

Each query reads one interaction source for a (viewer, connection) pair
inside the window ``window_start <= ts < window_end``. Sources are kept
separate so one failing table only blanks its own contribution.
"""

from dataclasses import dataclass
from datetime import datetime

from feedrank.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from feedrank.features.friend_ranking.domain.models import Connection
from feedrank.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DirectionalCount:
    given: int = 0
    received: int = 0
    last_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class MessageRow:
    sender_id: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class ContentEngagementSummary:
    total_seconds: float = 0.0
    interactions: int = 0
    last_at: datetime | None = None


def _directional(row: dict | None) -> DirectionalCount:
    if not row:
        return DirectionalCount()
    return DirectionalCount(
        given=int(row.get("given") or 0),
        received=int(row.get("received") or 0),
        last_at=row.get("last_at"),
    )


class InteractionAggregationRepository:
    """Raw SQL helpers for reading interaction sources."""

    @staticmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_connections(viewer_id: str) -> list[Connection]:
        rows = await fetch_all(
            """
            SELECT friend_id, rank
            FROM friendships
            WHERE user_id = %s
              AND status = 'accepted'
            ORDER BY rank ASC, friend_id ASC
            """,
            (viewer_id,),
        )
        return [
            Connection(viewer_id=viewer_id, connection_id=row["friend_id"], rank=row["rank"])
            for row in rows
        ]

    @staticmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_active_viewer_ids() -> list[str]:
        rows = await fetch_all(
            """
            SELECT DISTINCT user_id
            FROM friendships
            WHERE status = 'accepted'
            ORDER BY user_id
            """
        )
        return [row["user_id"] for row in rows]

    @staticmethod
    async def fetch_messages(
        viewer_id: str, connection_id: str, window_start: datetime, window_end: datetime
    ) -> list[MessageRow]:
        rows = await fetch_all(
            """
            SELECT sender_id, created_at
            FROM messages
            WHERE ((sender_id = %s AND receiver_id = %s)
                OR (sender_id = %s AND receiver_id = %s))
              AND created_at >= %s
              AND created_at < %s
            ORDER BY created_at ASC
            """,
            (viewer_id, connection_id, connection_id, viewer_id, window_start, window_end),
        )
        return [MessageRow(sender_id=row["sender_id"], created_at=row["created_at"]) for row in rows]

    @staticmethod
    async def fetch_post_reactions(
        viewer_id: str, connection_id: str, window_start: datetime, window_end: datetime
    ) -> DirectionalCount:
        row = await fetch_one(
            """
            SELECT
                COUNT(*) FILTER (WHERE pl.user_id = %s AND p.user_id = %s) AS given,
                COUNT(*) FILTER (WHERE pl.user_id = %s AND p.user_id = %s) AS received,
                MAX(pl.created_at) AS last_at
            FROM post_likes pl
            JOIN posts p ON p.id = pl.post_id
            WHERE ((pl.user_id = %s AND p.user_id = %s) OR (pl.user_id = %s AND p.user_id = %s))
              AND pl.created_at >= %s
              AND pl.created_at < %s
            """,
            (
                viewer_id, connection_id, connection_id, viewer_id,
                viewer_id, connection_id, connection_id, viewer_id,
                window_start, window_end,
            ),
        )
        return _directional(row)

    @staticmethod
    async def fetch_comments(
        viewer_id: str, connection_id: str, window_start: datetime, window_end: datetime
    ) -> DirectionalCount:
        row = await fetch_one(
            """
            SELECT
                COUNT(*) FILTER (WHERE c.user_id = %s AND p.user_id = %s) AS given,
                COUNT(*) FILTER (WHERE c.user_id = %s AND p.user_id = %s) AS received,
                MAX(c.created_at) AS last_at
            FROM comments c
            JOIN posts p ON p.id = c.post_id
            WHERE ((c.user_id = %s AND p.user_id = %s) OR (c.user_id = %s AND p.user_id = %s))
              AND c.created_at >= %s
              AND c.created_at < %s
            """,
            (
                viewer_id, connection_id, connection_id, viewer_id,
                viewer_id, connection_id, connection_id, viewer_id,
                window_start, window_end,
            ),
        )
        return _directional(row)

    @staticmethod
    async def fetch_comment_reactions(
        viewer_id: str, connection_id: str, window_start: datetime, window_end: datetime
    ) -> DirectionalCount:
        row = await fetch_one(
            """
            SELECT
                COUNT(*) FILTER (WHERE cl.user_id = %s AND c.user_id = %s) AS given,
                COUNT(*) FILTER (WHERE cl.user_id = %s AND c.user_id = %s) AS received,
                MAX(cl.created_at) AS last_at
            FROM comment_likes cl
            JOIN comments c ON c.id = cl.comment_id
            WHERE ((cl.user_id = %s AND c.user_id = %s) OR (cl.user_id = %s AND c.user_id = %s))
              AND cl.created_at >= %s
              AND cl.created_at < %s
            """,
            (
                viewer_id, connection_id, connection_id, viewer_id,
                viewer_id, connection_id, connection_id, viewer_id,
                window_start, window_end,
            ),
        )
        return _directional(row)

    @staticmethod
    async def fetch_story_views(
        viewer_id: str, connection_id: str, window_start: datetime, window_end: datetime
    ) -> DirectionalCount:
        row = await fetch_one(
            """
            SELECT
                COUNT(*) FILTER (WHERE sv.user_id = %s AND s.user_id = %s) AS given,
                COUNT(*) FILTER (WHERE sv.user_id = %s AND s.user_id = %s) AS received,
                MAX(sv.viewed_at) AS last_at
            FROM story_views sv
            JOIN stories s ON s.id = sv.story_id
            WHERE ((sv.user_id = %s AND s.user_id = %s) OR (sv.user_id = %s AND s.user_id = %s))
              AND sv.viewed_at >= %s
              AND sv.viewed_at < %s
            """,
            (
                viewer_id, connection_id, connection_id, viewer_id,
                viewer_id, connection_id, connection_id, viewer_id,
                window_start, window_end,
            ),
        )
        return _directional(row)

    @staticmethod
    async def fetch_broadcast_views(
        viewer_id: str, connection_id: str, window_start: datetime, window_end: datetime
    ) -> DirectionalCount:
        """Broadcasts (live streams) by the connection that the viewer joined."""
        row = await fetch_one(
            """
            SELECT COUNT(*) AS given, 0 AS received, MAX(av.joined_at) AS last_at
            FROM action_viewers av
            JOIN actions a ON a.id = av.action_id
            WHERE av.user_id = %s
              AND a.user_id = %s
              AND av.joined_at >= %s
              AND av.joined_at < %s
            """,
            (viewer_id, connection_id, window_start, window_end),
        )
        return _directional(row)

    @staticmethod
    async def fetch_meetup_ids(user_id: str, window_start: datetime, window_end: datetime) -> set[str]:
        rows = await fetch_all(
            """
            SELECT DISTINCT meetup_id
            FROM meetup_check_ins
            WHERE user_id = %s
              AND check_in_time >= %s
              AND check_in_time < %s
            """,
            (user_id, window_start, window_end),
        )
        return {row["meetup_id"] for row in rows}

    @staticmethod
    async def fetch_event_ids(user_id: str, window_start: datetime, window_end: datetime) -> set[str]:
        rows = await fetch_all(
            """
            SELECT DISTINCT ea.event_id
            FROM event_attendees ea
            JOIN events e ON e.id = ea.event_id
            WHERE ea.user_id = %s
              AND ea.status = 'going'
              AND e.event_date >= %s
              AND e.event_date < %s
            """,
            (user_id, window_start, window_end),
        )
        return {row["event_id"] for row in rows}

    @staticmethod
    async def fetch_content_engagement(
        viewer_id: str, connection_id: str, window_start: datetime, window_end: datetime
    ) -> ContentEngagementSummary:
        row = await fetch_one(
            """
            SELECT
                COALESCE(SUM(duration_seconds), 0) AS total_seconds,
                COUNT(*) AS interactions,
                MAX(created_at) AS last_at
            FROM content_engagements
            WHERE user_id = %s
              AND author_id = %s
              AND created_at >= %s
              AND created_at < %s
            """,
            (viewer_id, connection_id, window_start, window_end),
        )
        if not row:
            return ContentEngagementSummary()
        return ContentEngagementSummary(
            total_seconds=float(row.get("total_seconds") or 0.0),
            interactions=int(row.get("interactions") or 0),
            last_at=row.get("last_at"),
        )

    @staticmethod
    async def insert_content_engagement(
        viewer_id: str,
        author_id: str,
        content_id: str,
        content_kind: str,
        duration_seconds: float,
        created_at: datetime,
    ) -> None:
        await execute_query(
            """
            INSERT INTO content_engagements
                (user_id, author_id, content_id, content_type, duration_seconds, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (viewer_id, author_id, content_id, content_kind, duration_seconds, created_at),
        )
        logger.debug(
            "Content engagement recorded",
            viewer_id=viewer_id,
            author_id=author_id,
            content_kind=content_kind,
        )
