"""
Engagement predictor.

Estimates reactions and comments for a candidate item from the author's
recent history, the kind's history, the hour it was posted and its length.
The prediction itself is pure; history reads are time-bounded and a
missing or failed read falls back to the profile baselines.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC
from zoneinfo import ZoneInfo

from feedrank.config import ranking_profiles, settings
from feedrank.db.helpers import fetch_with_timeout
from feedrank.features.feed_curation.domain.models import (
    CandidateItem,
    ContentKind,
    EngagementHistory,
    EngagementPrediction,
)
from feedrank.features.feed_curation.domain.profile import PredictionProfile
from feedrank.infrastructure.observability.logging import get_logger
from feedrank.models.domain.pipeline_domain import StageIssue, StageResult

from .repository import EngagementHistoryRepository

logger = get_logger(__name__)

STAGE = "prediction"


class EngagementPredictor:
    def __init__(self, profile: PredictionProfile | None = None):
        self.profile = profile or ranking_profiles.prediction
        tz = self.profile.timezone
        self._zone = UTC if tz == "UTC" else ZoneInfo(tz)

    def author_baseline(self) -> EngagementHistory:
        baseline = self.profile.author_baseline
        return EngagementHistory(baseline.reactions, baseline.comments, data_points=0)

    def kind_baseline(self, kind: ContentKind) -> EngagementHistory:
        baseline = self.profile.kind_baselines[kind]
        return EngagementHistory(baseline.reactions, baseline.comments, data_points=0)

    def time_of_day_factor(self, item: CandidateItem) -> float:
        hour = item.created_at.astimezone(self._zone).hour
        return self.profile.hour_factors[hour]

    def length_factor(self, body: str) -> float:
        length = len(body)
        for band in self.profile.length_bands:
            if band.min_chars <= length <= band.max_chars:
                return band.factor
        return self.profile.length_fallback

    def predict(
        self,
        item: CandidateItem,
        author_history: EngagementHistory | None = None,
        kind_history: EngagementHistory | None = None,
    ) -> EngagementPrediction:
        p = self.profile
        author = author_history or self.author_baseline()
        kind = kind_history or self.kind_baseline(item.kind)
        timing = self.time_of_day_factor(item)
        length = self.length_factor(item.body)

        reactions = (
            author.avg_reactions * p.author_weight
            + kind.avg_reactions * p.kind_weight
            + timing * p.timing_weight * p.reaction_factor_scale
            + length * p.length_weight * p.reaction_factor_scale
        )
        comments = (
            author.avg_comments * p.author_weight
            + kind.avg_comments * p.kind_weight
            + timing * p.timing_weight * p.comment_factor_scale
            + length * p.length_weight * p.comment_factor_scale
        )
        confidence = min(
            1.0, (author.data_points + kind.data_points) / p.full_confidence_data_points
        )
        return EngagementPrediction(
            predicted_reactions=reactions,
            predicted_comments=comments,
            engagement_score=reactions * p.reaction_share + comments * p.comment_share,
            confidence=confidence,
        )


class EngagementPredictionService:
    """Loads history for a batch of candidates and predicts each one."""

    def __init__(
        self,
        predictor: EngagementPredictor | None = None,
        repository=EngagementHistoryRepository,
        fetch_timeout: float | None = None,
    ):
        self.predictor = predictor or EngagementPredictor()
        self.repository = repository
        self.fetch_timeout = fetch_timeout or settings.EXTERNAL_FETCH_TIMEOUT_SECONDS

    async def predict_items(
        self, items: Sequence[CandidateItem]
    ) -> StageResult[dict[str, EngagementPrediction]]:
        author_ids = sorted({item.author_id for item in items})
        limit = self.predictor.profile.author_history_limit

        kind_fetch = fetch_with_timeout(
            self.repository.fetch_kind_histories(),
            timeout=self.fetch_timeout,
            default={},
            stage=STAGE,
            source="kind_history",
        )
        author_fetches = [
            fetch_with_timeout(
                self.repository.fetch_author_history(author_id, limit),
                timeout=self.fetch_timeout,
                default=None,
                stage=STAGE,
                source="author_history",
                author_id=author_id,
            )
            for author_id in author_ids
        ]
        (kind_histories, kind_issue), *author_outcomes = await asyncio.gather(
            kind_fetch, *author_fetches
        )

        issues: list[StageIssue] = [kind_issue] if kind_issue else []
        author_histories: dict[str, EngagementHistory | None] = {}
        for author_id, (history, issue) in zip(author_ids, author_outcomes):
            author_histories[author_id] = history
            if issue:
                issues.append(issue)

        predictions = {
            item.id: self.predictor.predict(
                item, author_histories.get(item.author_id), kind_histories.get(item.kind)
            )
            for item in items
        }
        logger.debug(
            "Engagement predicted",
            item_count=len(items),
            author_count=len(author_ids),
            degraded_sources=len(issues),
        )
        return StageResult(value=predictions, issues=tuple(issues))


engagement_prediction_service = EngagementPredictionService()
