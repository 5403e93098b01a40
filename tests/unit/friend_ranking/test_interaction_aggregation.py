import asyncio
from datetime import timedelta

import pytest

from feedrank.db.helpers import DatabaseError
from feedrank.features.friend_ranking.domain.models import InteractionKind
from feedrank.features.friend_ranking.pipeline.aggregation.repository import (
    ContentEngagementSummary,
    DirectionalCount,
    MessageRow,
)
from feedrank.features.friend_ranking.pipeline.aggregation.service import (
    InteractionAggregationService,
    SourceSnapshot,
    build_tally,
)

VIEWER = "viewer-1"
FRIEND = "friend-1"


class FakeAggregationRepository:
    def __init__(self, now, fail=(), slow=()):
        self.now = now
        self.fail = set(fail)
        self.slow = set(slow)

    async def _source(self, name, value):
        if name in self.fail:
            raise DatabaseError(f"{name} table unavailable", operation="fetch_all")
        if name in self.slow:
            await asyncio.sleep(1)
        return value

    async def fetch_messages(self, *pair):
        return await self._source(
            "messages",
            [
                MessageRow(sender_id=FRIEND, created_at=self.now - timedelta(hours=5)),
                MessageRow(sender_id=VIEWER, created_at=self.now - timedelta(hours=4)),
            ],
        )

    async def fetch_post_reactions(self, *pair):
        return await self._source("post_reactions", DirectionalCount(given=2, received=1))

    async def fetch_comments(self, *pair):
        return await self._source("comments", DirectionalCount(given=1, received=1))

    async def fetch_comment_reactions(self, *pair):
        return await self._source("comment_reactions", DirectionalCount())

    async def fetch_story_views(self, *pair):
        return await self._source("story_views", DirectionalCount(given=3))

    async def fetch_broadcast_views(self, *pair):
        return await self._source("broadcast_views", DirectionalCount(given=1))

    async def fetch_meetup_ids(self, user_id, window_start, window_end):
        ids = {"m1", "m2"} if user_id == VIEWER else {"m2", "m3"}
        return await self._source("meetups", ids)

    async def fetch_event_ids(self, user_id, window_start, window_end):
        return await self._source("events", set())

    async def fetch_content_engagement(self, *pair):
        return await self._source(
            "content", ContentEngagementSummary(total_seconds=120.0, interactions=4)
        )


@pytest.mark.asyncio
async def test_failed_source_contributes_zero_and_is_reported(now):
    service = InteractionAggregationService(
        repository=FakeAggregationRepository(now, fail={"post_reactions"}), fetch_timeout=0.5
    )

    result = await service.aggregate_pair(VIEWER, FRIEND, window_end=now)

    tally = result.value
    assert tally.count(InteractionKind.POST_REACTIONS_GIVEN) == 0
    assert tally.count(InteractionKind.POST_REACTIONS_RECEIVED) == 0
    assert tally.count(InteractionKind.COMMENTS_GIVEN) == 1
    assert tally.count(InteractionKind.MESSAGES_SENT) == 1
    assert result.degraded_sources == ("post_reactions",)
    assert not result.ok


@pytest.mark.asyncio
async def test_slow_source_times_out_without_blocking_tally(now):
    service = InteractionAggregationService(
        repository=FakeAggregationRepository(now, slow={"story_views"}), fetch_timeout=0.05
    )

    result = await service.aggregate_pair(VIEWER, FRIEND, window_end=now)

    assert result.value.count(InteractionKind.STORY_VIEWS_GIVEN) == 0
    assert result.value.count(InteractionKind.MESSAGES_RECEIVED) == 1
    assert result.degraded_sources == ("story_views",)
    assert "timed out" in result.issues[0].message


@pytest.mark.asyncio
async def test_all_sources_healthy_reports_no_issues(now):
    service = InteractionAggregationService(
        repository=FakeAggregationRepository(now), fetch_timeout=0.5
    )

    result = await service.aggregate_pair(VIEWER, FRIEND, window_end=now)

    assert result.ok
    assert result.value.count(InteractionKind.MEETUPS_TOGETHER) == 1
    assert result.value.time_in_content_seconds == 120.0


def test_shared_attendance_counts_overlap_only(now):
    snapshot = SourceSnapshot(
        viewer_meetup_ids=frozenset({"a", "b", "c"}),
        connection_meetup_ids=frozenset({"b", "c", "d"}),
        viewer_event_ids=frozenset({"e1"}),
        connection_event_ids=frozenset({"e2"}),
    )

    tally = build_tally(VIEWER, FRIEND, now - timedelta(days=30), now, snapshot)

    assert tally.count(InteractionKind.MEETUPS_TOGETHER) == 2
    assert tally.count(InteractionKind.EVENTS_TOGETHER) == 0


def test_messages_outside_window_are_ignored(now):
    start = now - timedelta(days=30)
    snapshot = SourceSnapshot(
        messages=[
            MessageRow(sender_id=VIEWER, created_at=start - timedelta(seconds=1)),
            MessageRow(sender_id=VIEWER, created_at=start),
            MessageRow(sender_id=FRIEND, created_at=now),
        ]
    )

    tally = build_tally(VIEWER, FRIEND, start, now, snapshot)

    assert tally.count(InteractionKind.MESSAGES_SENT) == 1
    assert tally.count(InteractionKind.MESSAGES_RECEIVED) == 0
    assert tally.last_interaction_at == start


def test_response_latency_uses_next_reply_within_window(now):
    received = now - timedelta(days=3)
    snapshot = SourceSnapshot(
        messages=[
            MessageRow(sender_id=FRIEND, created_at=received),
            MessageRow(sender_id=VIEWER, created_at=received + timedelta(minutes=10)),
            MessageRow(sender_id=FRIEND, created_at=received + timedelta(hours=1)),
            # Reply arrives after the 48h reply window
            MessageRow(sender_id=VIEWER, created_at=received + timedelta(hours=60)),
        ]
    )

    tally = build_tally(VIEWER, FRIEND, now - timedelta(days=30), now, snapshot)

    assert tally.average_response_seconds == pytest.approx(600.0)


def test_empty_snapshot_builds_zero_tally(now):
    tally = build_tally(VIEWER, FRIEND, now - timedelta(days=30), now, SourceSnapshot())

    assert tally.total_interactions == 0
    assert tally.last_interaction_at is None
    assert tally.average_response_seconds == 0.0


@pytest.mark.asyncio
async def test_track_content_engagement_skips_own_content(now):
    calls = []

    class Repo:
        @staticmethod
        async def insert_content_engagement(*args):
            calls.append(args)

    service = InteractionAggregationService(repository=Repo)

    await service.track_content_engagement(VIEWER, VIEWER, "post-1", "post", 30.0, now)
    await service.track_content_engagement(VIEWER, FRIEND, "post-2", "post", 30.0, now)

    assert len(calls) == 1
    assert calls[0][1] == FRIEND

    with pytest.raises(ValueError):
        await service.track_content_engagement(VIEWER, FRIEND, "post-3", "post", -1.0, now)
