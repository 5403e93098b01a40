"""
Domain models for the friend ranking feature.

Tallies and score records are plain frozen dataclasses: they are rebuilt
from scratch each recompute cycle and never mutated afterwards.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class InteractionKind(StrEnum):
    """Signals counted between a viewer and one connection."""

    MESSAGES_SENT = "messages_sent"
    MESSAGES_RECEIVED = "messages_received"
    POST_REACTIONS_GIVEN = "post_reactions_given"
    POST_REACTIONS_RECEIVED = "post_reactions_received"
    COMMENTS_GIVEN = "comments_given"
    COMMENTS_RECEIVED = "comments_received"
    COMMENT_REACTIONS_GIVEN = "comment_reactions_given"
    COMMENT_REACTIONS_RECEIVED = "comment_reactions_received"
    STORY_VIEWS_GIVEN = "story_views_given"
    STORY_VIEWS_RECEIVED = "story_views_received"
    BROADCAST_VIEWS = "broadcast_views"
    MEETUPS_TOGETHER = "meetups_together"
    EVENTS_TOGETHER = "events_together"


MESSAGING_KINDS = frozenset({InteractionKind.MESSAGES_SENT, InteractionKind.MESSAGES_RECEIVED})
REACTION_KINDS = frozenset(
    {
        InteractionKind.POST_REACTIONS_GIVEN,
        InteractionKind.POST_REACTIONS_RECEIVED,
        InteractionKind.COMMENTS_GIVEN,
        InteractionKind.COMMENTS_RECEIVED,
        InteractionKind.COMMENT_REACTIONS_GIVEN,
        InteractionKind.COMMENT_REACTIONS_RECEIVED,
    }
)
ATTENDANCE_KINDS = frozenset({InteractionKind.MEETUPS_TOGETHER, InteractionKind.EVENTS_TOGETHER})


class SuggestionReason(StrEnum):
    FREQUENT_COMMUNICATION = "frequent_communication"
    HIGH_ENGAGEMENT = "high_engagement"
    IN_PERSON_CONNECTION = "in_person_connection"
    GENERAL_ACTIVITY = "general_activity"


class SuggestionStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


@dataclass(frozen=True, slots=True)
class Connection:
    """A viewer's relationship to another member, with its manual rank (1 = closest)."""

    viewer_id: str
    connection_id: str
    rank: int


@dataclass(frozen=True, slots=True)
class InteractionTally:
    """Counts for one (viewer, connection) pair over a trailing window."""

    viewer_id: str
    connection_id: str
    window_start: datetime
    window_end: datetime
    counts: dict[InteractionKind, int] = field(default_factory=dict)
    time_in_content_seconds: float = 0.0
    content_interactions: int = 0
    average_response_seconds: float = 0.0
    last_interaction_at: datetime | None = None

    def count(self, kind: InteractionKind) -> int:
        return self.counts.get(kind, 0)

    def total(self, kinds: frozenset[InteractionKind]) -> int:
        return sum(self.count(kind) for kind in kinds)

    @property
    def total_interactions(self) -> int:
        return sum(self.counts.values())


@dataclass(frozen=True, slots=True)
class ScoreRecord:
    viewer_id: str
    connection_id: str
    interaction_score: float
    consistency_score: float
    engagement_score: float
    overall_score: float
    current_rank: int | None
    tally: InteractionTally
    computed_at: datetime

    def to_metrics(self) -> dict[str, Any]:
        """Snapshot attached to suggestions so users can see why a move was proposed."""
        tally = self.tally
        return {
            "total_interactions": tally.total_interactions,
            "messages": tally.total(MESSAGING_KINDS),
            "reactions_and_comments": tally.total(REACTION_KINDS),
            "shared_attendance": tally.total(ATTENDANCE_KINDS),
            "time_in_content_seconds": round(tally.time_in_content_seconds, 2),
            "interaction_score": round(self.interaction_score, 4),
            "consistency_score": round(self.consistency_score, 4),
            "engagement_score": round(self.engagement_score, 4),
            "overall_score": round(self.overall_score, 4),
        }


@dataclass(frozen=True, slots=True)
class RankSuggestion:
    id: str
    viewer_id: str
    connection_id: str
    current_rank: int
    suggested_rank: int
    confidence: float
    primary_reason: SuggestionReason
    justification: str
    supporting_metrics: dict[str, Any]
    status: SuggestionStatus
    created_at: datetime
    expires_at: datetime

    @property
    def moves_up(self) -> bool:
        return self.suggested_rank < self.current_rank

    def is_live(self, now: datetime) -> bool:
        """Pending and not yet past its expiry."""
        return self.status == SuggestionStatus.PENDING and self.expires_at > now
