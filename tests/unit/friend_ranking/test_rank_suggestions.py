from dataclasses import replace
from datetime import timedelta
from itertools import count

import pytest

from feedrank.features.friend_ranking.domain.models import (
    InteractionKind,
    SuggestionReason,
    SuggestionStatus,
)
from feedrank.features.friend_ranking.pipeline.suggestions.repository import (
    SuggestionNotFoundError,
)
from feedrank.features.friend_ranking.pipeline.suggestions.service import (
    RankSuggestionService,
    filter_live_suggestions,
)


def _service(store=None):
    ids = count(1)
    return RankSuggestionService(repository=store, id_factory=lambda: f"s-{next(ids)}")


def _by_connection(suggestions):
    return {s.connection_id: s for s in suggestions}


def test_closer_connections_are_proposed_higher(make_record, now):
    records = [
        make_record("connection-1", 90, current_rank=1),
        make_record("connection-2", 40, current_rank=2),
        make_record("connection-3", 95, current_rank=3),
    ]

    suggestions = _by_connection(_service().generate("viewer-1", records, now))

    assert suggestions["connection-3"].suggested_rank == 1
    assert suggestions["connection-1"].suggested_rank == 2
    assert suggestions["connection-3"].confidence >= 50
    assert suggestions["connection-1"].confidence >= 50
    # Displaced by the two moves above; a one-step difference is enough to propose
    assert suggestions["connection-2"].suggested_rank == 3


def test_no_suggestions_when_order_already_matches(make_record, now):
    records = [
        make_record("a", 80, current_rank=1),
        make_record("b", 60, current_rank=2),
        make_record("c", 10, current_rank=3),
    ]

    assert _service().generate("viewer-1", records, now) == []


def test_ties_keep_input_order(make_record):
    records = [make_record("a", 50, 2), make_record("b", 50, 1), make_record("c", 70, 3)]

    assert _service().suggested_ranks(records) == {"c": 1, "a": 2, "b": 3}


def test_unranked_connections_are_skipped(make_record, now):
    records = [make_record("a", 10, current_rank=1), make_record("b", 90, current_rank=None)]

    assert _service().generate("viewer-1", records, now) == []


def test_confidence_grows_with_difference_and_caps():
    service = _service()

    assert service.confidence(1) == 60
    assert service.confidence(3) == 80
    assert service.confidence(20) == 95


def test_suggestion_expires_after_ttl(make_record, now):
    records = [make_record("a", 10, current_rank=1), make_record("b", 90, current_rank=2)]

    suggestion = _service().generate("viewer-1", records, now)[0]

    assert suggestion.status == SuggestionStatus.PENDING
    assert suggestion.expires_at - suggestion.created_at == timedelta(days=7)
    assert suggestion.supporting_metrics["overall_score"] == 10


@pytest.mark.parametrize(
    "tally_fields, expected_reason",
    [
        (
            {"counts": {InteractionKind.MESSAGES_SENT: 1, InteractionKind.MEETUPS_TOGETHER: 2}},
            SuggestionReason.FREQUENT_COMMUNICATION,
        ),
        (
            {"counts": {InteractionKind.COMMENTS_GIVEN: 1, InteractionKind.EVENTS_TOGETHER: 1}},
            SuggestionReason.HIGH_ENGAGEMENT,
        ),
        (
            {"time_in_content_seconds": 300.0, "counts": {InteractionKind.MEETUPS_TOGETHER: 1}},
            SuggestionReason.HIGH_ENGAGEMENT,
        ),
        ({"counts": {InteractionKind.MEETUPS_TOGETHER: 1}}, SuggestionReason.IN_PERSON_CONNECTION),
        ({"counts": {InteractionKind.STORY_VIEWS_GIVEN: 4}}, SuggestionReason.GENERAL_ACTIVITY),
    ],
)
def test_reason_follows_priority_cascade(make_record, now, tally_fields, expected_reason):
    records = [
        make_record("steady", 50, current_rank=1),
        make_record("target", 90, current_rank=2, **tally_fields),
    ]

    suggestions = _by_connection(_service().generate("viewer-1", records, now))

    assert suggestions["target"].primary_reason == expected_reason


def test_fallback_message_depends_on_direction(make_record, now):
    records = [make_record("down", 10, current_rank=1), make_record("up", 90, current_rank=2)]

    suggestions = _by_connection(_service().generate("viewer-1", records, now))

    assert suggestions["up"].moves_up
    assert "higher" in suggestions["up"].justification
    assert not suggestions["down"].moves_up
    assert "lower" in suggestions["down"].justification


def test_live_filter_drops_expired_even_if_pending(make_record, now):
    records = [make_record("a", 10, current_rank=1), make_record("b", 90, current_rank=2)]
    fresh, stale = _service().generate("viewer-1", records, now)
    stale = replace(stale, expires_at=now - timedelta(seconds=1))

    live = filter_live_suggestions([fresh, stale], now)

    assert [s.id for s in live] == [fresh.id]


def test_live_filter_keeps_newest_per_connection(make_record, now):
    records = [make_record("a", 10, current_rank=1), make_record("b", 90, current_rank=2)]
    older = _service().generate("viewer-1", records, now - timedelta(hours=1))
    newer = _service().generate("viewer-1", records, now)
    newer = [replace(s, id=f"new-{s.id}") for s in newer]

    live = filter_live_suggestions(older + newer, now)

    assert sorted(s.id for s in live) == ["new-s-1", "new-s-2"]


@pytest.mark.asyncio
async def test_regenerating_supersedes_previous_batch(make_record, fake_suggestion_store, now):
    service = _service(fake_suggestion_store)
    records = [
        make_record("connection-1", 90, current_rank=1),
        make_record("connection-2", 40, current_rank=2),
        make_record("connection-3", 95, current_rank=3),
    ]

    first = await service.regenerate("viewer-1", records, now)
    second = await service.regenerate("viewer-1", records, now + timedelta(minutes=5))

    pending = fake_suggestion_store.pending_for("viewer-1")
    assert {s.id for s in pending} == {s.id for s in second}
    assert not {s.id for s in first} & {s.id for s in pending}

    live = await service.get_live_suggestions("viewer-1", now + timedelta(minutes=5))
    connections = [s.connection_id for s in live]
    assert len(connections) == len(set(connections))


@pytest.mark.asyncio
async def test_empty_batch_clears_pending(make_record, fake_suggestion_store, now):
    service = _service(fake_suggestion_store)
    await service.regenerate(
        "viewer-1", [make_record("a", 10, current_rank=1), make_record("b", 90, current_rank=2)], now
    )

    await service.regenerate(
        "viewer-1", [make_record("a", 90, current_rank=1), make_record("b", 10, current_rank=2)], now
    )

    assert fake_suggestion_store.pending_for("viewer-1") == []


@pytest.mark.asyncio
async def test_get_live_suggestions_hides_expired(make_record, fake_suggestion_store, now):
    service = _service(fake_suggestion_store)
    records = [make_record("a", 10, current_rank=1), make_record("b", 90, current_rank=2)]
    await service.regenerate("viewer-1", records, now)

    assert len(await service.get_live_suggestions("viewer-1", now + timedelta(days=6))) == 2
    assert await service.get_live_suggestions("viewer-1", now + timedelta(days=7)) == []


@pytest.mark.asyncio
async def test_accept_and_dismiss_only_live_suggestions(make_record, fake_suggestion_store, now):
    service = _service(fake_suggestion_store)
    records = [make_record("a", 10, current_rank=1), make_record("b", 90, current_rank=2)]
    first, second = await service.regenerate("viewer-1", records, now)

    accepted = await service.accept("viewer-1", first.id, now)
    await service.dismiss("viewer-1", second.id, now)

    assert accepted.connection_id == first.connection_id
    assert fake_suggestion_store.rows[first.id].status == SuggestionStatus.ACCEPTED
    assert fake_suggestion_store.rows[second.id].status == SuggestionStatus.DISMISSED
    with pytest.raises(SuggestionNotFoundError):
        await service.dismiss("viewer-1", first.id, now)


@pytest.mark.asyncio
async def test_expire_stale_marks_old_pending(make_record, fake_suggestion_store, now):
    service = _service(fake_suggestion_store)
    records = [make_record("a", 10, current_rank=1), make_record("b", 90, current_rank=2)]
    await service.regenerate("viewer-1", records, now)

    assert await service.expire_stale(now + timedelta(days=1)) == 0
    assert await service.expire_stale(now + timedelta(days=8)) == 2
    assert fake_suggestion_store.pending_for("viewer-1") == []
