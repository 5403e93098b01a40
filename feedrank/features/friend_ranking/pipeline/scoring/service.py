"""
Connection scoring service - turns interaction tallies into score records.

All scoring here is a pure function of (tally, profile, now); persistence
lives in the repository so the same tally always yields the same record.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import UTC, datetime

from feedrank.config import ranking_profiles
from feedrank.features.friend_ranking.domain.models import InteractionTally, ScoreRecord
from feedrank.features.friend_ranking.domain.profile import ScoringProfile
from feedrank.infrastructure.observability.logging import get_logger
from feedrank.models.domain.pipeline_domain import StageResult

from .repository import ScoreRecordRepository

logger = get_logger(__name__)


class ScoringService:
    def __init__(
        self,
        profile: ScoringProfile | None = None,
        repository: type[ScoreRecordRepository] = ScoreRecordRepository,
    ):
        self.profile = profile or ranking_profiles.scoring
        self.repository = repository

    def score_tally(
        self,
        tally: InteractionTally,
        current_rank: int | None = None,
        now: datetime | None = None,
    ) -> ScoreRecord:
        now = now or tally.window_end
        interaction = self.interaction_score(tally)
        consistency = self.consistency_score(self._days_since(tally.last_interaction_at, now))
        engagement = self.engagement_score(
            tally.time_in_content_seconds, tally.content_interactions
        )
        return ScoreRecord(
            viewer_id=tally.viewer_id,
            connection_id=tally.connection_id,
            interaction_score=interaction,
            consistency_score=consistency,
            engagement_score=engagement,
            overall_score=(interaction + consistency + engagement) / 3,
            current_rank=current_rank,
            tally=tally,
            computed_at=now,
        )

    def interaction_score(self, tally: InteractionTally) -> float:
        profile = self.profile
        score = sum(count * profile.weight_for(kind) for kind, count in tally.counts.items())
        score += tally.time_in_content_seconds * profile.time_in_content_weight
        score += tally.average_response_seconds * profile.response_latency_weight
        return max(0.0, score)

    def consistency_score(self, days_since_last: float | None) -> float:
        """Full marks inside the grace period, then exponential decay."""
        if days_since_last is None:
            return 0.0
        profile = self.profile
        days = max(0.0, days_since_last)
        if days <= profile.consistency_grace_days:
            return profile.max_sub_score
        decay = math.exp(-(days - profile.consistency_grace_days) / profile.consistency_decay_days)
        return max(0.0, profile.max_sub_score * decay)

    def engagement_score(self, total_seconds: float, interactions: int) -> float:
        if total_seconds <= 0 or interactions <= 0:
            return 0.0
        profile = self.profile
        per_interaction = total_seconds / interactions
        time_score = profile.max_sub_score * min(
            1.0, total_seconds / profile.engagement_time_cap_seconds
        )
        quality_score = profile.max_sub_score * min(
            1.0, per_interaction / profile.engagement_per_interaction_cap_seconds
        )
        return (time_score + quality_score) / 2

    @staticmethod
    def _days_since(last: datetime | None, now: datetime) -> float | None:
        if last is None:
            return None
        return (now - last).total_seconds() / 86400

    async def score_and_store(
        self,
        tallies: Iterable[StageResult[InteractionTally]],
        current_ranks: dict[str, int],
        now: datetime | None = None,
    ) -> StageResult[list[ScoreRecord]]:
        """Score every tally for one viewer and persist the batch."""
        now = now or datetime.now(UTC)
        records: list[ScoreRecord] = []
        issues = ()
        for result in tallies:
            tally = result.value
            records.append(self.score_tally(tally, current_ranks.get(tally.connection_id), now))
            issues += result.issues

        if records:
            await self.repository.upsert_score_records(records)
            logger.info(
                "Connection scores stored",
                viewer_id=records[0].viewer_id,
                connection_count=len(records),
                degraded_sources=len(issues),
            )
        return StageResult(value=records, issues=issues)


scoring_service = ScoringService()
