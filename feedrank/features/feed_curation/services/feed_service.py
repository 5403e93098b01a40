"""
Feed curation service - builds one curated page for a viewer request.

Every per-viewer input (ranks, affinity, engagement history) is read with an
upper time bound. A slow or failing read falls back to a neutral default and
is reported on the result; the caller always gets a page.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from feedrank.config import settings
from feedrank.db.helpers import fetch_with_timeout
from feedrank.features.feed_curation.domain.models import (
    CandidateItem,
    CuratedPage,
    ViewerAffinity,
)
from feedrank.features.feed_curation.pipeline.curation.repository import CurationInputRepository
from feedrank.features.feed_curation.pipeline.curation.service import (
    CurationAssembler,
    curation_assembler,
)
from feedrank.features.feed_curation.pipeline.prediction.service import (
    EngagementPredictionService,
    engagement_prediction_service,
)
from feedrank.infrastructure.observability.logging import get_logger
from feedrank.models.domain.pipeline_domain import StageIssue, StageResult

logger = get_logger(__name__)

STAGE = "curation"


def parse_candidates(
    rows: Iterable[CandidateItem | Mapping[str, Any]],
) -> StageResult[list[CandidateItem]]:
    """Validate raw candidate rows; malformed or duplicate rows are left out."""
    items: list[CandidateItem] = []
    seen: set[str] = set()
    issues: list[StageIssue] = []

    for index, row in enumerate(rows):
        if isinstance(row, CandidateItem):
            item = row
        else:
            try:
                item = CandidateItem.model_validate(row)
            except ValidationError as exc:
                fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
                logger.warning(
                    "Malformed candidate item excluded",
                    index=index,
                    item_id=row.get("id") if isinstance(row, Mapping) else None,
                    invalid_fields=fields,
                )
                issues.append(
                    StageIssue(
                        stage=STAGE,
                        source="candidate_items",
                        message=f"item {index} invalid: {', '.join(fields)}",
                    )
                )
                continue

        if item.id in seen:
            logger.warning("Duplicate candidate item excluded", item_id=item.id)
            issues.append(
                StageIssue(
                    stage=STAGE, source="candidate_items", message=f"duplicate item {item.id}"
                )
            )
            continue
        seen.add(item.id)
        items.append(item)

    return StageResult(value=items, issues=tuple(issues))


class FeedCurationService:
    def __init__(
        self,
        assembler: CurationAssembler = curation_assembler,
        predictions: EngagementPredictionService = engagement_prediction_service,
        repository=CurationInputRepository,
        fetch_timeout: float | None = None,
    ):
        self.assembler = assembler
        self.predictions = predictions
        self.repository = repository
        self.fetch_timeout = fetch_timeout or settings.EXTERNAL_FETCH_TIMEOUT_SECONDS

    async def get_curated_feed(
        self,
        viewer_id: str,
        candidates: Iterable[CandidateItem | Mapping[str, Any]],
        page: int = 1,
        page_size: int | None = None,
        now: datetime | None = None,
    ) -> StageResult[CuratedPage]:
        now = now or datetime.now(UTC)
        parsed = parse_candidates(candidates)
        items = parsed.value

        (ranks, rank_issue), (affinity, affinity_issue), predicted = await asyncio.gather(
            fetch_with_timeout(
                self.repository.fetch_connection_ranks(viewer_id),
                timeout=self.fetch_timeout,
                default={},
                stage=STAGE,
                source="connection_ranks",
                viewer_id=viewer_id,
            ),
            fetch_with_timeout(
                self.repository.fetch_viewer_affinity(viewer_id),
                timeout=self.fetch_timeout,
                default=ViewerAffinity(),
                stage=STAGE,
                source="viewer_affinity",
                viewer_id=viewer_id,
            ),
            self.predictions.predict_items(items),
        )

        curated = self.assembler.assemble(
            items,
            ranks=ranks,
            predictions=predicted.value,
            page=page,
            page_size=page_size,
            now=now,
            affinity=affinity,
        )
        result = StageResult(value=curated, issues=parsed.issues + predicted.issues).with_issues(
            rank_issue, affinity_issue
        )

        logger.info(
            "Curated feed built",
            viewer_id=viewer_id,
            page=curated.page,
            returned=len(curated.items),
            total_pages=curated.total_pages,
            degraded_sources=list(result.degraded_sources),
        )
        return result


feed_curation_service = FeedCurationService()
