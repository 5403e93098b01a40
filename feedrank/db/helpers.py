"""
Database helper functions for common patterns.
Reduces boilerplate in repositories.
"""

import asyncio
from collections.abc import Awaitable
from functools import wraps
from typing import Any, TypeVar

import psycopg

from feedrank.db.pool import get_db_connection, get_db_transaction
from feedrank.infrastructure.observability.logging import get_logger, log_stage_issue
from feedrank.models.domain.pipeline_domain import StageIssue

logger = get_logger(__name__)

T = TypeVar("T")


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        Dict with row data or None if no results
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
                return row if row else None
        else:
            async with await get_db_connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    row = await cur.fetchone()
                    return row if row else None

    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_one") from e


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """
    Execute query and return all rows as list of dicts.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        List of dicts with row data
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
        else:
            async with await get_db_connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()

    except psycopg.Error as e:
        logger.error("Database fetch_all error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_all") from e


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """
    Execute query and return number of affected rows.
    """
    try:
        if connection:
            cursor = await connection.execute(query, params)
            return cursor.rowcount
        else:
            async with await get_db_connection() as conn:
                cursor = await conn.execute(query, params)
                return cursor.rowcount

    except psycopg.Error as e:
        logger.error("Database execute error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="execute") from e


async def execute_transaction(queries_and_params: list[tuple]) -> list[int]:
    """
    Execute multiple queries in a single transaction.

    Args:
        queries_and_params: List of (query, params) tuples

    Returns:
        Affected row count per query, in order

    Example:
        await execute_transaction([
            ("SELECT pg_advisory_xact_lock(hashtext(%s))", (viewer_id,)),
            ("DELETE FROM friend_ranking_suggestions WHERE user_id = %s", (viewer_id,)),
        ])
    """
    try:
        rowcounts: list[int] = []
        async with await get_db_transaction() as conn:
            for query, params in queries_and_params:
                cursor = await conn.execute(query, params)
                rowcounts.append(cursor.rowcount)

        logger.debug("Transaction completed successfully", query_count=len(queries_and_params))
        return rowcounts

    except psycopg.Error as e:
        logger.error("Transaction failed", query_count=len(queries_and_params), error=str(e))
        raise DatabaseError(f"Transaction failed: {e}", operation="transaction") from e


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Decorator to retry database operations on temporary failures.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay between retries (exponential backoff)
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except DatabaseError as e:
                    cause = e.__cause__
                    if not isinstance(cause, psycopg.OperationalError) or attempt >= max_retries:
                        raise
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


async def fetch_with_timeout(
    awaitable: Awaitable[T],
    *,
    timeout: float,
    default: T,
    stage: str,
    source: str,
    **context: Any,
) -> tuple[T, StageIssue | None]:
    """
    Run a read against an external collaborator with an upper time bound.

    Slow or failing reads degrade to ``default`` and come back with the
    StageIssue describing what was lost. Programming errors propagate.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout), None
    except TimeoutError:
        message = f"timed out after {timeout}s"
    except (DatabaseError, psycopg.Error) as exc:
        message = str(exc)

    log_stage_issue(stage, source, message, **context)
    return default, StageIssue(stage=stage, source=source, message=message)
