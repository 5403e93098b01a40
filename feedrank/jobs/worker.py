"""
Background worker for the ranking jobs.

    feedrank-worker rank_recompute      # rebuild scores and suggestions on an interval
    feedrank-worker suggestion_expiry   # one sweep of pending suggestions past expiry

The job may also be chosen with WORKER_JOB. Each job owns its database
pool lifecycle; the worker only configures logging and dispatches.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from feedrank.config import settings
from feedrank.features.friend_ranking.jobs.recompute_job import (
    run_suggestion_expiry,
    start_rank_recompute_scheduler,
)
from feedrank.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

DEFAULT_JOB = "rank_recompute"

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "rank_recompute": start_rank_recompute_scheduler,
    "suggestion_expiry": run_suggestion_expiry,
}


def job_settings(name: str) -> dict[str, Any]:
    """Settings that shape a job's run, logged at startup."""
    if name == "rank_recompute":
        return {
            "interval_minutes": settings.RANK_RECOMPUTE_INTERVAL_MINUTES,
            "max_concurrent_viewers": settings.MAX_CONCURRENT_VIEWERS,
            "max_concurrent_pair_fetches": settings.MAX_CONCURRENT_PAIR_FETCHES,
            "fetch_timeout_seconds": settings.EXTERNAL_FETCH_TIMEOUT_SECONDS,
        }
    return {}


def _resolve_job_name() -> str:
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", DEFAULT_JOB).strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY))}"
        )

    logger.info(
        "Starting feedrank worker",
        job=name,
        environment=settings.environment,
        **job_settings(name),
    )
    await JOB_REGISTRY[name]()


def main() -> None:
    setup_logging(settings.LOG_LEVEL)
    asyncio.run(run_worker(_resolve_job_name()))


if __name__ == "__main__":
    main()
