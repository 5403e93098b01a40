from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from feedrank.features.friend_ranking.domain.models import (
    InteractionTally,
    RankSuggestion,
    ScoreRecord,
    SuggestionStatus,
)
from feedrank.features.friend_ranking.pipeline.suggestions.repository import (
    SuggestionNotFoundError,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class FakeSuggestionStore:
    """In-memory stand-in for RankSuggestionRepository."""

    def __init__(self):
        self.rows: dict[str, RankSuggestion] = {}
        self.replace_calls: list[tuple[str, int]] = []

    async def replace_pending_suggestions(self, viewer_id, suggestions):
        self.replace_calls.append((viewer_id, len(suggestions)))
        self.rows = {
            key: row
            for key, row in self.rows.items()
            if not (row.viewer_id == viewer_id and row.status == SuggestionStatus.PENDING)
        }
        for suggestion in suggestions:
            self.rows[suggestion.id] = suggestion

    async def fetch_live_suggestions(self, viewer_id, now):
        return [row for row in self.rows.values() if row.viewer_id == viewer_id]

    def _set_status(self, viewer_id, suggestion_id, now, status):
        row = self.rows.get(suggestion_id)
        if row is None or row.viewer_id != viewer_id or not row.is_live(now):
            raise SuggestionNotFoundError(suggestion_id)
        self.rows[suggestion_id] = _replace_status(row, status)
        return row

    async def accept_suggestion(self, viewer_id, suggestion_id, now):
        return self._set_status(viewer_id, suggestion_id, now, SuggestionStatus.ACCEPTED)

    async def dismiss_suggestion(self, viewer_id, suggestion_id, now):
        self._set_status(viewer_id, suggestion_id, now, SuggestionStatus.DISMISSED)

    async def expire_stale_suggestions(self, now):
        expired = 0
        for key, row in list(self.rows.items()):
            if row.status == SuggestionStatus.PENDING and row.expires_at <= now:
                self.rows[key] = _replace_status(row, SuggestionStatus.EXPIRED)
                expired += 1
        return expired

    def pending_for(self, viewer_id):
        return [
            row
            for row in self.rows.values()
            if row.viewer_id == viewer_id and row.status == SuggestionStatus.PENDING
        ]


def _replace_status(row: RankSuggestion, status: SuggestionStatus) -> RankSuggestion:
    return replace(row, status=status)


class FakeScoreStore:
    """In-memory stand-in for ScoreRecordRepository."""

    def __init__(self):
        self.records: dict[tuple[str, str], ScoreRecord] = {}
        self.upserts = 0

    async def upsert_score_records(self, records):
        self.upserts += 1
        for record in records:
            self.records[(record.viewer_id, record.connection_id)] = record

    async def fetch_overall_scores(self, viewer_id):
        return {
            connection_id: record.overall_score
            for (owner, connection_id), record in self.records.items()
            if owner == viewer_id
        }


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def fake_suggestion_store():
    return FakeSuggestionStore()


@pytest.fixture
def fake_score_store():
    return FakeScoreStore()


@pytest.fixture
def make_tally():
    def _make(
        connection_id="friend-1",
        viewer_id="viewer-1",
        counts=None,
        last_interaction_at=None,
        time_in_content_seconds=0.0,
        content_interactions=0,
        average_response_seconds=0.0,
    ):
        return InteractionTally(
            viewer_id=viewer_id,
            connection_id=connection_id,
            window_start=NOW - timedelta(days=30),
            window_end=NOW,
            counts=dict(counts or {}),
            time_in_content_seconds=time_in_content_seconds,
            content_interactions=content_interactions,
            average_response_seconds=average_response_seconds,
            last_interaction_at=last_interaction_at,
        )

    return _make


@pytest.fixture
def make_record(make_tally):
    def _make(connection_id, overall_score, current_rank, counts=None, **tally_fields):
        tally = make_tally(connection_id=connection_id, counts=counts, **tally_fields)
        return ScoreRecord(
            viewer_id=tally.viewer_id,
            connection_id=connection_id,
            interaction_score=overall_score,
            consistency_score=overall_score,
            engagement_score=overall_score,
            overall_score=overall_score,
            current_rank=current_rank,
            tally=tally,
            computed_at=NOW,
        )

    return _make
