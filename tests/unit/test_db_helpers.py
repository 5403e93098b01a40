import asyncio

import psycopg
import pytest

from feedrank.db.helpers import DatabaseError, fetch_with_timeout, with_db_retry
from feedrank.db.pool import DatabasePoolManager


async def _value(value):
    return value


async def _slow():
    await asyncio.sleep(1)
    return "late"


async def _raise(exc):
    raise exc


@pytest.mark.asyncio
async def test_fetch_with_timeout_returns_value():
    value, issue = await fetch_with_timeout(
        _value(3), timeout=0.5, default=0, stage="aggregation", source="messages"
    )

    assert (value, issue) == (3, None)


@pytest.mark.asyncio
async def test_fetch_with_timeout_degrades_on_timeout():
    value, issue = await fetch_with_timeout(
        _slow(), timeout=0.01, default="fallback", stage="curation", source="connection_ranks"
    )

    assert value == "fallback"
    assert issue.source == "connection_ranks"
    assert issue.recoverable


@pytest.mark.asyncio
async def test_fetch_with_timeout_degrades_on_database_error():
    value, issue = await fetch_with_timeout(
        _raise(DatabaseError("boom", operation="fetch_all")),
        timeout=0.5,
        default=[],
        stage="aggregation",
        source="comments",
    )

    assert value == []
    assert issue.message == "boom"


@pytest.mark.asyncio
async def test_fetch_with_timeout_propagates_programming_errors():
    with pytest.raises(KeyError):
        await fetch_with_timeout(
            _raise(KeyError("rank")), timeout=0.5, default={}, stage="curation", source="ranks"
        )


@pytest.mark.asyncio
async def test_with_db_retry_retries_operational_errors(monkeypatch):
    monkeypatch.setattr(asyncio, "sleep", _noop_sleep)
    attempts = {"count": 0}

    @with_db_retry(max_retries=2, base_delay=0)
    async def flaky():
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise DatabaseError("lost", operation="fetch") from psycopg.OperationalError("lost")
        return "ok"

    assert await flaky() == "ok"
    assert attempts["count"] == 3


@pytest.mark.asyncio
async def test_with_db_retry_does_not_retry_other_errors():
    attempts = {"count": 0}

    @with_db_retry(max_retries=3, base_delay=0)
    async def broken():
        attempts["count"] += 1
        raise DatabaseError("syntax", operation="fetch") from psycopg.ProgrammingError("syntax")

    with pytest.raises(DatabaseError):
        await broken()
    assert attempts["count"] == 1


async def _noop_sleep(_delay):
    return None


@pytest.mark.asyncio
async def test_pool_requires_database_url(monkeypatch):
    from feedrank.db import pool as pool_module

    monkeypatch.setattr(pool_module.settings, "DATABASE_URL", None)

    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        await DatabasePoolManager().initialize()


@pytest.mark.asyncio
async def test_health_check_without_pool_reports_unhealthy():
    status = await DatabasePoolManager().health_check()

    assert status["healthy"] is False
