"""
Rank recompute job.

Rebuilds tallies, score records and rank suggestions for each viewer.
Viewers are processed independently with bounded concurrency; work for a
single viewer is serialized by an in-process lock keyed by viewer id, and
across processes by the advisory lock taken when suggestions are replaced.
"""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass, field
from datetime import UTC, datetime

from feedrank.config import settings
from feedrank.db.pool import db_pool
from feedrank.features.friend_ranking.domain.models import Connection, InteractionTally
from feedrank.features.friend_ranking.pipeline.aggregation.repository import (
    InteractionAggregationRepository,
)
from feedrank.features.friend_ranking.pipeline.aggregation.service import (
    InteractionAggregationService,
    interaction_aggregation_service,
)
from feedrank.features.friend_ranking.pipeline.scoring.service import (
    ScoringService,
    scoring_service,
)
from feedrank.features.friend_ranking.pipeline.suggestions.service import (
    RankSuggestionService,
    rank_suggestion_service,
)
from feedrank.infrastructure.observability.logging import get_logger
from feedrank.models.domain.pipeline_domain import StageResult

logger = get_logger(__name__)


class ViewerLocks:
    """One asyncio.Lock per viewer id; unused locks are garbage collected."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def for_viewer(self, viewer_id: str) -> asyncio.Lock:
        lock = self._locks.get(viewer_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[viewer_id] = lock
        return lock


@dataclass(frozen=True, slots=True)
class ViewerRecomputeSummary:
    viewer_id: str
    connections: int
    suggestions: int


@dataclass
class RecomputeMetrics:
    """Per-run counters for the recompute job."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    viewers_processed: int = 0
    viewers_failed: int = 0
    suggestions_written: int = 0
    degraded_sources: int = 0
    errors: list[dict] = field(default_factory=list)

    def record_success(self, result: StageResult[ViewerRecomputeSummary]) -> None:
        self.viewers_processed += 1
        self.suggestions_written += result.value.suggestions
        self.degraded_sources += len(result.issues)

    def record_failure(self, viewer_id: str, error: str) -> None:
        self.viewers_processed += 1
        self.viewers_failed += 1
        self.errors.append(
            {"viewer_id": viewer_id, "error": error, "timestamp": datetime.now(UTC).isoformat()}
        )
        logger.error("Rank recompute failed for viewer", viewer_id=viewer_id, error=error)

    def to_dict(self) -> dict:
        return {
            "job_run": "rank_recompute",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(
                (datetime.now(UTC) - self.start_time).total_seconds(), 2
            ),
            "viewers_processed": self.viewers_processed,
            "viewers_failed": self.viewers_failed,
            "suggestions_written": self.suggestions_written,
            "degraded_sources": self.degraded_sources,
            "errors_count": len(self.errors),
        }


class RankRecomputeJob:
    def __init__(
        self,
        aggregation: InteractionAggregationService = interaction_aggregation_service,
        scoring: ScoringService = scoring_service,
        suggestions: RankSuggestionService = rank_suggestion_service,
        repository=InteractionAggregationRepository,
        max_concurrent_viewers: int | None = None,
        max_concurrent_pairs: int | None = None,
    ):
        self.aggregation = aggregation
        self.scoring = scoring
        self.suggestions = suggestions
        self.repository = repository
        self.max_concurrent_viewers = max_concurrent_viewers or settings.MAX_CONCURRENT_VIEWERS
        self.max_concurrent_pairs = max_concurrent_pairs or settings.MAX_CONCURRENT_PAIR_FETCHES
        self.locks = ViewerLocks()

    async def recompute_viewer(
        self, viewer_id: str, now: datetime | None = None
    ) -> StageResult[ViewerRecomputeSummary]:
        """Recompute one viewer end to end; concurrent calls for the same viewer queue up."""
        async with self.locks.for_viewer(viewer_id):
            now = now or datetime.now(UTC)
            connections = await self.repository.fetch_connections(viewer_id)
            window_start, window_end = self.aggregation.default_window(now)
            pair_slots = asyncio.Semaphore(self.max_concurrent_pairs)

            async def aggregate(connection: Connection) -> StageResult[InteractionTally]:
                async with pair_slots:
                    return await self.aggregation.aggregate_pair(
                        viewer_id, connection.connection_id, window_start, window_end
                    )

            tallies = await asyncio.gather(*(aggregate(c) for c in connections))
            ranks = {c.connection_id: c.rank for c in connections}
            scored = await self.scoring.score_and_store(tallies, ranks, now)
            written = await self.suggestions.regenerate(viewer_id, scored.value, now)

            logger.info(
                "Viewer rankings recomputed",
                viewer_id=viewer_id,
                connections=len(connections),
                suggestions=len(written),
                degraded_sources=len(scored.issues),
            )
            return StageResult(
                value=ViewerRecomputeSummary(
                    viewer_id=viewer_id,
                    connections=len(connections),
                    suggestions=len(written),
                ),
                issues=scored.issues,
            )

    async def run_once(self, viewer_ids: list[str] | None = None) -> dict:
        metrics = RecomputeMetrics()
        if viewer_ids is None:
            viewer_ids = await self.repository.fetch_active_viewer_ids()

        viewer_slots = asyncio.Semaphore(self.max_concurrent_viewers)

        async def process(viewer_id: str) -> None:
            async with viewer_slots:
                try:
                    metrics.record_success(await self.recompute_viewer(viewer_id))
                except Exception as exc:
                    metrics.record_failure(viewer_id, f"{type(exc).__name__}: {exc}")

        await asyncio.gather(*(process(viewer_id) for viewer_id in viewer_ids))
        summary = metrics.to_dict()
        logger.info("Rank recompute run completed", **summary)
        return summary


async def start_rank_recompute_scheduler() -> None:
    """Worker entry point: recompute every viewer on a fixed interval."""
    await db_pool.initialize()
    job = RankRecomputeJob()
    interval_seconds = settings.RANK_RECOMPUTE_INTERVAL_MINUTES * 60
    logger.info("Rank recompute scheduler started", interval_seconds=interval_seconds)
    try:
        while True:
            await job.run_once()
            pool_status = await db_pool.health_check()
            if pool_status["healthy"]:
                logger.info("Database pool status", **pool_status)
            else:
                logger.warning("Database pool unhealthy", **pool_status)
            await asyncio.sleep(interval_seconds)
    finally:
        await db_pool.close()


async def run_suggestion_expiry() -> None:
    """Worker entry point: mark pending suggestions past their expiry as expired."""
    await db_pool.initialize()
    try:
        await rank_suggestion_service.expire_stale()
    finally:
        await db_pool.close()
