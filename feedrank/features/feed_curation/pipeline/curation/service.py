"""
Curation assembler.

Scores every candidate from rank weight, predicted engagement, recency and
content kind, then runs the selection passes in ``constraints`` and slices
the requested page. Scoring and selection are pure given ``now``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from feedrank.config import ranking_profiles
from feedrank.features.feed_curation.domain.models import (
    CandidateItem,
    CuratedItem,
    CuratedPage,
    CurationType,
    EngagementPrediction,
    ViewerAffinity,
)
from feedrank.features.feed_curation.domain.profile import CurationProfile
from feedrank.infrastructure.observability.logging import get_logger

from .constraints import paginate, rebalance, select_diverse

logger = get_logger(__name__)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class CurationAssembler:
    def __init__(self, profile: CurationProfile | None = None):
        self.profile = profile or ranking_profiles.curation

    def rank_weight(self, rank: int | None) -> float:
        """1.0 at rank 1 down to the floor at ``max_rank``; unranked authors sit at the floor."""
        p = self.profile
        if rank is None:
            rank = p.max_rank
        rank = min(max(rank, 1), p.max_rank)
        step = (rank - 1) / (p.max_rank - 1)
        return max(p.min_rank_weight, 1.0 - step * (1.0 - p.min_rank_weight))

    def recency_boost(self, created_at: datetime, now: datetime) -> float:
        age_hours = max(0.0, (now - created_at).total_seconds() / 3600)
        for band in self.profile.recency_bands:
            if age_hours <= band.max_age_hours:
                return band.boost
        return self.profile.recency_floor

    @staticmethod
    def relevance(item: CandidateItem, affinity: ViewerAffinity) -> float:
        return _clamp(
            0.5 + 0.3 * affinity.for_kind(item.kind) + 0.2 * affinity.for_author(item.author_id)
        )

    def curation_type(self, rank_weight: float, engagement: float, recency: float) -> CurationType:
        p = self.profile
        if rank_weight > p.high_rank_threshold:
            return CurationType.HIGH_RANK
        if engagement > p.engagement_label_threshold:
            return CurationType.ENGAGEMENT_PREDICTED
        if recency > p.recent_threshold:
            return CurationType.RECENT
        return CurationType.DIVERSITY

    def score_item(
        self,
        item: CandidateItem,
        rank: int | None,
        prediction: EngagementPrediction,
        affinity: ViewerAffinity,
        now: datetime,
    ) -> CuratedItem:
        p = self.profile
        rank_weight = self.rank_weight(rank)
        engagement = prediction.engagement_score
        recency = self.recency_boost(item.created_at, now)
        kind_weight = p.kind_weights[item.kind]

        final_score = (
            rank_weight * p.rank_weight
            + engagement * p.engagement_weight
            + recency * p.recency_weight
            + kind_weight * p.kind_weight
        )
        return CuratedItem(
            item=item,
            relevance_score=self.relevance(item, affinity),
            engagement_prediction=engagement,
            rank_weight=rank_weight,
            recency_boost=recency,
            diversity_boost=kind_weight,
            final_score=final_score,
            curation_type=self.curation_type(rank_weight, engagement, recency),
        )

    def resolve_page_size(self, page_size: int | None) -> int:
        if page_size is None:
            return self.profile.default_page_size
        return min(max(page_size, 1), self.profile.max_page_size)

    def assemble(
        self,
        items: Sequence[CandidateItem],
        ranks: Mapping[str, int],
        predictions: Mapping[str, EngagementPrediction],
        page: int = 1,
        page_size: int | None = None,
        now: datetime | None = None,
        affinity: ViewerAffinity | None = None,
    ) -> CuratedPage:
        now = now or datetime.now(UTC)
        page = max(page, 1)
        page_size = self.resolve_page_size(page_size)
        affinity = affinity or ViewerAffinity()
        p = self.profile

        scored = [
            self.score_item(
                item,
                ranks.get(item.author_id),
                predictions.get(item.id) or EngagementPrediction.neutral(),
                affinity,
                now,
            )
            for item in items
        ]
        pool = select_diverse(
            scored,
            pool_size=page_size * p.pool_multiplier,
            per_author_kind_cap=p.per_author_kind_cap,
            kind_share_cap=p.kind_share_cap,
        )
        ordered = rebalance(pool, p.target_distribution)
        sliced = paginate(ordered, page, page_size)

        logger.debug(
            "Feed page assembled",
            candidate_count=len(items),
            pool_count=len(pool),
            page=page,
            page_size=page_size,
            returned=len(sliced.items),
        )
        return CuratedPage(
            items=list(sliced.items),
            has_more=sliced.has_more,
            total_pages=sliced.total_pages,
            page=page,
            page_size=page_size,
        )


curation_assembler = CurationAssembler()
