"""
Rank suggestion service - compares computed closeness with manual ranks.

Generation is pure: score records in, suggestions out. Storage always
replaces the viewer's whole pending batch, and reads always re-apply the
expiry rule so an expired row is never surfaced even if still pending.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime, timedelta

from feedrank.config import ranking_profiles
from feedrank.features.friend_ranking.domain.models import (
    ATTENDANCE_KINDS,
    MESSAGING_KINDS,
    REACTION_KINDS,
    RankSuggestion,
    ScoreRecord,
    SuggestionReason,
    SuggestionStatus,
)
from feedrank.features.friend_ranking.domain.profile import ScoringProfile
from feedrank.infrastructure.observability.logging import get_logger

from .repository import RankSuggestionRepository

logger = get_logger(__name__)


def filter_live_suggestions(
    suggestions: Iterable[RankSuggestion], now: datetime
) -> list[RankSuggestion]:
    """Keep pending, unexpired suggestions, at most one per connection (newest wins)."""
    latest: dict[str, RankSuggestion] = {}
    for suggestion in suggestions:
        if not suggestion.is_live(now):
            continue
        seen = latest.get(suggestion.connection_id)
        if seen is None or suggestion.created_at > seen.created_at:
            latest[suggestion.connection_id] = suggestion
    return sorted(
        latest.values(),
        key=lambda s: (-s.confidence, s.suggested_rank, s.connection_id),
    )


class RankSuggestionService:
    def __init__(
        self,
        profile: ScoringProfile | None = None,
        repository=RankSuggestionRepository,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.profile = profile or ranking_profiles.scoring
        self.repository = repository
        self.id_factory = id_factory

    def suggested_ranks(self, records: Sequence[ScoreRecord]) -> dict[str, int]:
        """1-based position by overall score; ties keep input order (sorted() is stable)."""
        ordered = sorted(records, key=lambda record: -record.overall_score)
        return {record.connection_id: position for position, record in enumerate(ordered, start=1)}

    def generate(
        self, viewer_id: str, records: Sequence[ScoreRecord], now: datetime | None = None
    ) -> list[RankSuggestion]:
        now = now or datetime.now(UTC)
        ranked = [record for record in records if record.current_rank is not None]
        suggested = self.suggested_ranks(ranked)
        suggestions: list[RankSuggestion] = []

        for record in ranked:
            suggested_rank = suggested[record.connection_id]
            difference = abs(record.current_rank - suggested_rank)
            if difference < self.profile.min_rank_difference:
                continue
            suggestions.append(self._build(viewer_id, record, suggested_rank, difference, now))

        logger.debug(
            "Rank suggestions generated",
            viewer_id=viewer_id,
            connection_count=len(ranked),
            suggestion_count=len(suggestions),
        )
        return suggestions

    def confidence(self, rank_difference: int) -> float:
        profile = self.profile
        return min(
            profile.max_confidence,
            profile.base_confidence + profile.confidence_per_rank * rank_difference,
        )

    def _build(
        self,
        viewer_id: str,
        record: ScoreRecord,
        suggested_rank: int,
        difference: int,
        now: datetime,
    ) -> RankSuggestion:
        moves_up = suggested_rank < record.current_rank
        reason, justification = self._reason(record, moves_up)
        return RankSuggestion(
            id=self.id_factory(),
            viewer_id=viewer_id,
            connection_id=record.connection_id,
            current_rank=record.current_rank,
            suggested_rank=suggested_rank,
            confidence=self.confidence(difference),
            primary_reason=reason,
            justification=justification,
            supporting_metrics=record.to_metrics(),
            status=SuggestionStatus.PENDING,
            created_at=now,
            expires_at=now + timedelta(days=self.profile.suggestion_ttl_days),
        )

    def _reason(self, record: ScoreRecord, moves_up: bool) -> tuple[SuggestionReason, str]:
        tally = record.tally
        days = self.profile.window_days

        messages = tally.total(MESSAGING_KINDS)
        if messages > 0:
            return (
                SuggestionReason.FREQUENT_COMMUNICATION,
                f"You and this connection exchanged {messages} message(s) in the last {days} days.",
            )

        reactions = tally.total(REACTION_KINDS)
        if reactions > 0:
            return (
                SuggestionReason.HIGH_ENGAGEMENT,
                f"You have traded {reactions} reaction(s) and comment(s) in the last {days} days.",
            )

        if tally.time_in_content_seconds > 0:
            minutes = max(1, round(tally.time_in_content_seconds / 60))
            return (
                SuggestionReason.HIGH_ENGAGEMENT,
                f"You spent about {minutes} minute(s) with this connection's content recently.",
            )

        attended = tally.total(ATTENDANCE_KINDS)
        if attended > 0:
            return (
                SuggestionReason.IN_PERSON_CONNECTION,
                f"You attended {attended} meetup(s) or event(s) together.",
            )

        if moves_up:
            return (
                SuggestionReason.GENERAL_ACTIVITY,
                "Based on your recent activity, consider ranking this connection higher "
                "to see more of their content.",
            )
        return (
            SuggestionReason.GENERAL_ACTIVITY,
            "Your recent activity with this connection is lower than its current rank suggests.",
        )

    async def regenerate(
        self, viewer_id: str, records: Sequence[ScoreRecord], now: datetime | None = None
    ) -> list[RankSuggestion]:
        """Generate a fresh batch and atomically supersede the viewer's pending one."""
        suggestions = self.generate(viewer_id, records, now)
        await self.repository.replace_pending_suggestions(viewer_id, suggestions)
        return suggestions

    async def get_live_suggestions(
        self, viewer_id: str, now: datetime | None = None
    ) -> list[RankSuggestion]:
        now = now or datetime.now(UTC)
        rows = await self.repository.fetch_live_suggestions(viewer_id, now)
        return filter_live_suggestions(rows, now)

    async def accept(
        self, viewer_id: str, suggestion_id: str, now: datetime | None = None
    ) -> RankSuggestion:
        return await self.repository.accept_suggestion(
            viewer_id, suggestion_id, now or datetime.now(UTC)
        )

    async def dismiss(self, viewer_id: str, suggestion_id: str, now: datetime | None = None) -> None:
        await self.repository.dismiss_suggestion(viewer_id, suggestion_id, now or datetime.now(UTC))
        logger.info("Rank suggestion dismissed", viewer_id=viewer_id, suggestion_id=suggestion_id)

    async def expire_stale(self, now: datetime | None = None) -> int:
        expired = await self.repository.expire_stale_suggestions(now or datetime.now(UTC))
        logger.info("Stale rank suggestions expired", expired_count=expired)
        return expired


rank_suggestion_service = RankSuggestionService()
