import asyncio
from unittest.mock import AsyncMock

import pytest

from feedrank.features.friend_ranking.domain.models import Connection, InteractionKind
from feedrank.features.friend_ranking.jobs import recompute_job
from feedrank.features.friend_ranking.jobs.recompute_job import RankRecomputeJob, ViewerLocks
from feedrank.features.friend_ranking.pipeline.aggregation.service import (
    InteractionAggregationService,
)
from feedrank.features.friend_ranking.pipeline.scoring.service import ScoringService
from feedrank.features.friend_ranking.pipeline.suggestions.service import RankSuggestionService
from feedrank.models.domain.pipeline_domain import StageIssue, StageResult


class FakeConnections:
    def __init__(self, connections, viewers=("viewer-1",), failing_viewers=()):
        self.connections = connections
        self.viewers = list(viewers)
        self.failing_viewers = set(failing_viewers)

    async def fetch_connections(self, viewer_id):
        if viewer_id in self.failing_viewers:
            raise RuntimeError("friendships unavailable")
        return [
            Connection(viewer_id=viewer_id, connection_id=c.connection_id, rank=c.rank)
            for c in self.connections
        ]

    async def fetch_active_viewer_ids(self):
        return self.viewers


class FakeAggregation(InteractionAggregationService):
    """Returns canned tallies and counts overlapping runs for the same viewer."""

    def __init__(self, make_tally, messages, degraded=()):
        super().__init__()
        self.make_tally = make_tally
        self.messages = messages
        self.degraded = set(degraded)
        self.active_viewers: set[str] = set()
        self.overlaps = 0

    async def aggregate_pair(self, viewer_id, connection_id, window_start=None, window_end=None):
        if viewer_id in self.active_viewers and connection_id == "c1":
            self.overlaps += 1
        if connection_id == "c1":
            self.active_viewers.add(viewer_id)
        await asyncio.sleep(0.01)
        tally = self.make_tally(
            connection_id=connection_id,
            viewer_id=viewer_id,
            counts={InteractionKind.MESSAGES_SENT: self.messages.get(connection_id, 0)},
            last_interaction_at=window_end,
        )
        if connection_id == "c3":
            self.active_viewers.discard(viewer_id)
        issues = ()
        if connection_id in self.degraded:
            issues = (StageIssue(stage="aggregation", source="comments", message="timed out"),)
        return StageResult(value=tally, issues=issues)


def _job(make_tally, fake_score_store, fake_suggestion_store, **kwargs):
    connections = [
        Connection("viewer-1", "c1", 1),
        Connection("viewer-1", "c2", 2),
        Connection("viewer-1", "c3", 3),
    ]
    repository = kwargs.pop("repository", None) or FakeConnections(connections)
    aggregation = FakeAggregation(make_tally, {"c1": 5, "c2": 1, "c3": 9}, **kwargs)
    job = RankRecomputeJob(
        aggregation=aggregation,
        scoring=ScoringService(repository=fake_score_store),
        suggestions=RankSuggestionService(repository=fake_suggestion_store),
        repository=repository,
        max_concurrent_viewers=2,
        max_concurrent_pairs=2,
    )
    return job, aggregation


@pytest.mark.asyncio
async def test_recompute_viewer_scores_and_suggests(
    make_tally, fake_score_store, fake_suggestion_store, now
):
    job, _ = _job(make_tally, fake_score_store, fake_suggestion_store, degraded={"c2"})

    result = await job.recompute_viewer("viewer-1", now)

    assert result.value.connections == 3
    assert result.degraded_sources == ("comments",)
    assert len(fake_score_store.records) == 3
    pending = {
        s.connection_id: s.suggested_rank for s in fake_suggestion_store.pending_for("viewer-1")
    }
    assert pending["c3"] == 1
    assert pending["c1"] == 2


@pytest.mark.asyncio
async def test_concurrent_recomputes_for_one_viewer_are_serialized(
    make_tally, fake_score_store, fake_suggestion_store, now
):
    job, aggregation = _job(make_tally, fake_score_store, fake_suggestion_store)

    await asyncio.gather(
        job.recompute_viewer("viewer-1", now), job.recompute_viewer("viewer-1", now)
    )

    assert aggregation.overlaps == 0
    assert fake_suggestion_store.replace_calls == [("viewer-1", 3), ("viewer-1", 3)]
    connections = [s.connection_id for s in fake_suggestion_store.pending_for("viewer-1")]
    assert len(connections) == len(set(connections))


@pytest.mark.asyncio
async def test_run_once_isolates_failing_viewer(
    make_tally, fake_score_store, fake_suggestion_store
):
    repository = FakeConnections(
        [Connection("x", "c1", 1), Connection("x", "c2", 2), Connection("x", "c3", 3)],
        viewers=["viewer-1", "viewer-2"],
        failing_viewers={"viewer-2"},
    )
    job, _ = _job(make_tally, fake_score_store, fake_suggestion_store, repository=repository)

    summary = await job.run_once()

    assert summary["viewers_processed"] == 2
    assert summary["viewers_failed"] == 1
    assert summary["suggestions_written"] == 3
    assert fake_suggestion_store.pending_for("viewer-2") == []


def test_viewer_locks_are_shared_per_viewer():
    locks = ViewerLocks()

    first = locks.for_viewer("viewer-1")

    assert locks.for_viewer("viewer-1") is first
    assert locks.for_viewer("viewer-2") is not first


@pytest.mark.asyncio
async def test_scheduler_reports_pool_health_after_each_run(monkeypatch):
    pool = AsyncMock()
    pool.health_check.return_value = {"healthy": True, "service": "database_pool"}
    job = AsyncMock()
    monkeypatch.setattr(recompute_job, "db_pool", pool)
    monkeypatch.setattr(recompute_job, "RankRecomputeJob", lambda: job)
    monkeypatch.setattr(
        recompute_job.asyncio, "sleep", AsyncMock(side_effect=asyncio.CancelledError)
    )

    with pytest.raises(asyncio.CancelledError):
        await recompute_job.start_rank_recompute_scheduler()

    job.run_once.assert_awaited_once()
    pool.health_check.assert_awaited_once()
    pool.close.assert_awaited_once()
