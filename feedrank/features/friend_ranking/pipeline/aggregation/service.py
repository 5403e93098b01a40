"""
Interaction aggregation service.

Reads every interaction source for a (viewer, connection) pair and folds the
rows into one InteractionTally. Sources are fetched concurrently and each is
time-bounded; a source that fails or times out contributes zero and is
reported on the StageResult instead of blanking the tally.
"""

from __future__ import annotations

import asyncio
import statistics
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from feedrank.config import ranking_profiles, settings
from feedrank.db.helpers import fetch_with_timeout
from feedrank.features.friend_ranking.domain.models import InteractionKind, InteractionTally
from feedrank.features.friend_ranking.domain.profile import ScoringProfile
from feedrank.infrastructure.observability.logging import get_logger
from feedrank.models.domain.pipeline_domain import StageResult

from .repository import (
    ContentEngagementSummary,
    DirectionalCount,
    InteractionAggregationRepository,
    MessageRow,
)

logger = get_logger(__name__)

STAGE = "aggregation"


@dataclass(frozen=True, slots=True)
class SourceSnapshot:
    """Raw rows read for one pair; every field defaults to "nothing observed"."""

    messages: list[MessageRow] = field(default_factory=list)
    post_reactions: DirectionalCount = DirectionalCount()
    comments: DirectionalCount = DirectionalCount()
    comment_reactions: DirectionalCount = DirectionalCount()
    story_views: DirectionalCount = DirectionalCount()
    broadcast_views: DirectionalCount = DirectionalCount()
    viewer_meetup_ids: frozenset[str] = frozenset()
    connection_meetup_ids: frozenset[str] = frozenset()
    viewer_event_ids: frozenset[str] = frozenset()
    connection_event_ids: frozenset[str] = frozenset()
    content: ContentEngagementSummary = ContentEngagementSummary()


def build_tally(
    viewer_id: str,
    connection_id: str,
    window_start: datetime,
    window_end: datetime,
    snapshot: SourceSnapshot,
    reply_window: timedelta = timedelta(hours=48),
) -> InteractionTally:
    messages = sorted(
        (m for m in snapshot.messages if window_start <= m.created_at < window_end),
        key=lambda m: m.created_at,
    )
    sent = sum(1 for m in messages if m.sender_id == viewer_id)
    received = sum(1 for m in messages if m.sender_id == connection_id)

    counts = {
        InteractionKind.MESSAGES_SENT: sent,
        InteractionKind.MESSAGES_RECEIVED: received,
        InteractionKind.POST_REACTIONS_GIVEN: snapshot.post_reactions.given,
        InteractionKind.POST_REACTIONS_RECEIVED: snapshot.post_reactions.received,
        InteractionKind.COMMENTS_GIVEN: snapshot.comments.given,
        InteractionKind.COMMENTS_RECEIVED: snapshot.comments.received,
        InteractionKind.COMMENT_REACTIONS_GIVEN: snapshot.comment_reactions.given,
        InteractionKind.COMMENT_REACTIONS_RECEIVED: snapshot.comment_reactions.received,
        InteractionKind.STORY_VIEWS_GIVEN: snapshot.story_views.given,
        InteractionKind.STORY_VIEWS_RECEIVED: snapshot.story_views.received,
        InteractionKind.BROADCAST_VIEWS: snapshot.broadcast_views.given,
        # Shared attendance is the overlap of distinct ids, not a row count
        InteractionKind.MEETUPS_TOGETHER: len(
            snapshot.viewer_meetup_ids & snapshot.connection_meetup_ids
        ),
        InteractionKind.EVENTS_TOGETHER: len(
            snapshot.viewer_event_ids & snapshot.connection_event_ids
        ),
    }

    last_seen = [
        ts
        for ts in (
            messages[-1].created_at if messages else None,
            snapshot.post_reactions.last_at,
            snapshot.comments.last_at,
            snapshot.comment_reactions.last_at,
            snapshot.story_views.last_at,
            snapshot.broadcast_views.last_at,
            snapshot.content.last_at,
        )
        if ts is not None
    ]

    return InteractionTally(
        viewer_id=viewer_id,
        connection_id=connection_id,
        window_start=window_start,
        window_end=window_end,
        counts=counts,
        time_in_content_seconds=max(0.0, snapshot.content.total_seconds),
        content_interactions=max(0, snapshot.content.interactions),
        average_response_seconds=_average_response_seconds(
            messages, viewer_id, connection_id, reply_window
        ),
        last_interaction_at=max(last_seen) if last_seen else None,
    )


def _average_response_seconds(
    messages: list[MessageRow], viewer_id: str, connection_id: str, reply_window: timedelta
) -> float:
    """Mean delay between a message the viewer received and the viewer's next reply."""
    response_seconds: list[float] = []
    for idx, current in enumerate(messages):
        if current.sender_id != connection_id:
            continue
        for future in messages[idx + 1 :]:
            if future.created_at - current.created_at > reply_window:
                break
            if future.sender_id == viewer_id:
                response_seconds.append((future.created_at - current.created_at).total_seconds())
                break
    return statistics.mean(response_seconds) if response_seconds else 0.0


class InteractionAggregationService:
    def __init__(
        self,
        profile: ScoringProfile | None = None,
        repository: type[InteractionAggregationRepository] = InteractionAggregationRepository,
        fetch_timeout: float | None = None,
    ):
        self.profile = profile or ranking_profiles.scoring
        self.repository = repository
        self.fetch_timeout = fetch_timeout or settings.EXTERNAL_FETCH_TIMEOUT_SECONDS

    def default_window(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        window_end = now or datetime.now(UTC)
        return window_end - timedelta(days=self.profile.window_days), window_end

    async def aggregate_pair(
        self,
        viewer_id: str,
        connection_id: str,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
    ) -> StageResult[InteractionTally]:
        default_start, default_end = self.default_window(window_end)
        window_start = window_start or default_start
        window_end = window_end or default_end
        repo = self.repository
        pair = (viewer_id, connection_id, window_start, window_end)

        sources = {
            "messages": (repo.fetch_messages(*pair), []),
            "post_reactions": (repo.fetch_post_reactions(*pair), DirectionalCount()),
            "comments": (repo.fetch_comments(*pair), DirectionalCount()),
            "comment_reactions": (repo.fetch_comment_reactions(*pair), DirectionalCount()),
            "story_views": (repo.fetch_story_views(*pair), DirectionalCount()),
            "broadcast_views": (repo.fetch_broadcast_views(*pair), DirectionalCount()),
            "viewer_meetup_ids": (repo.fetch_meetup_ids(viewer_id, window_start, window_end), set()),
            "connection_meetup_ids": (
                repo.fetch_meetup_ids(connection_id, window_start, window_end),
                set(),
            ),
            "viewer_event_ids": (repo.fetch_event_ids(viewer_id, window_start, window_end), set()),
            "connection_event_ids": (
                repo.fetch_event_ids(connection_id, window_start, window_end),
                set(),
            ),
            "content": (
                repo.fetch_content_engagement(*pair),
                ContentEngagementSummary(),
            ),
        }

        outcomes = await asyncio.gather(
            *(
                fetch_with_timeout(
                    awaitable,
                    timeout=self.fetch_timeout,
                    default=default,
                    stage=STAGE,
                    source=name,
                    viewer_id=viewer_id,
                    connection_id=connection_id,
                )
                for name, (awaitable, default) in sources.items()
            )
        )
        values = {name: value for name, (value, _issue) in zip(sources, outcomes)}
        issues = tuple(issue for _value, issue in outcomes if issue is not None)

        snapshot = SourceSnapshot(
            messages=list(values["messages"]),
            post_reactions=values["post_reactions"],
            comments=values["comments"],
            comment_reactions=values["comment_reactions"],
            story_views=values["story_views"],
            broadcast_views=values["broadcast_views"],
            viewer_meetup_ids=frozenset(values["viewer_meetup_ids"]),
            connection_meetup_ids=frozenset(values["connection_meetup_ids"]),
            viewer_event_ids=frozenset(values["viewer_event_ids"]),
            connection_event_ids=frozenset(values["connection_event_ids"]),
            content=values["content"],
        )
        tally = build_tally(
            viewer_id,
            connection_id,
            window_start,
            window_end,
            snapshot,
            reply_window=timedelta(hours=self.profile.reply_window_hours),
        )

        logger.debug(
            "Interaction tally built",
            viewer_id=viewer_id,
            connection_id=connection_id,
            total_interactions=tally.total_interactions,
            degraded_sources=[issue.source for issue in issues],
        )
        return StageResult(value=tally, issues=issues)

    async def track_content_engagement(
        self,
        viewer_id: str,
        author_id: str,
        content_id: str,
        content_kind: str,
        duration_seconds: float,
        created_at: datetime | None = None,
    ) -> None:
        """Record time a viewer spent on a connection's content."""
        if duration_seconds < 0:
            raise ValueError("duration_seconds must be non-negative")
        if viewer_id == author_id:
            return
        await self.repository.insert_content_engagement(
            viewer_id,
            author_id,
            content_id,
            content_kind,
            duration_seconds,
            created_at or datetime.now(UTC),
        )


interaction_aggregation_service = InteractionAggregationService()
