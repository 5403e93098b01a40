"""
Domain models for feed curation.

Candidate items arrive from the content feed and are validated here; a row
that fails validation is dropped from curation rather than failing the page.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ContentKind(StrEnum):
    POST = "post"
    POLL = "poll"
    EVENT = "event"
    BROADCAST = "broadcast"


class CurationType(StrEnum):
    HIGH_RANK = "high-rank"
    ENGAGEMENT_PREDICTED = "engagement-predicted"
    DIVERSITY = "diversity"
    RECENT = "recent"


class CandidateItem(BaseModel):
    """A piece of content that may appear in a viewer's feed."""

    model_config = ConfigDict(
        frozen=True, extra="ignore", alias_generator=to_camel, populate_by_name=True
    )

    id: str = Field(..., min_length=1)
    kind: ContentKind
    author_id: str = Field(..., min_length=1)
    body: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class CuratedItem(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    item: CandidateItem
    relevance_score: float
    engagement_prediction: float
    rank_weight: float
    recency_boost: float
    diversity_boost: float
    final_score: float
    curation_type: CurationType

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def kind(self) -> ContentKind:
        return self.item.kind

    @property
    def author_id(self) -> str:
        return self.item.author_id

    @property
    def created_at(self) -> datetime:
        return self.item.created_at


class CuratedPage(BaseModel):
    """One page of the curated feed; dumps as ``{items, hasMore, totalPages}``."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    items: list[CuratedItem]
    has_more: bool
    total_pages: int
    page: int
    page_size: int


@dataclass(frozen=True, slots=True)
class EngagementHistory:
    """Average reactions/comments over the most recent items of an author or kind."""

    avg_reactions: float
    avg_comments: float
    data_points: int


@dataclass(frozen=True, slots=True)
class EngagementPrediction:
    predicted_reactions: float
    predicted_comments: float
    engagement_score: float
    confidence: float

    @classmethod
    def neutral(cls) -> "EngagementPrediction":
        return cls(0.0, 0.0, 0.0, 0.0)


@dataclass(frozen=True, slots=True)
class ViewerAffinity:
    """How strongly a viewer leans toward each content kind and author, 0..1."""

    kind_preferences: dict[ContentKind, float] = field(default_factory=dict)
    author_affinity: dict[str, float] = field(default_factory=dict)
    default: float = 0.5

    def for_kind(self, kind: ContentKind) -> float:
        return self.kind_preferences.get(kind, self.default)

    def for_author(self, author_id: str) -> float:
        return self.author_affinity.get(author_id, self.default)
