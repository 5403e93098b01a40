"""
Weight and threshold tables for connection scoring and rank suggestions.

Profiles are immutable and validated on construction so a bad table stops
the worker at startup rather than producing NaN scores at runtime.
"""

import math

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import InteractionKind

DEFAULT_INTERACTION_WEIGHTS: dict[InteractionKind, float] = {
    InteractionKind.MESSAGES_SENT: 3.0,
    InteractionKind.MESSAGES_RECEIVED: 2.8,
    InteractionKind.POST_REACTIONS_GIVEN: 1.5,
    InteractionKind.POST_REACTIONS_RECEIVED: 2.0,
    InteractionKind.COMMENTS_GIVEN: 2.2,
    InteractionKind.COMMENTS_RECEIVED: 2.5,
    InteractionKind.COMMENT_REACTIONS_GIVEN: 1.0,
    InteractionKind.COMMENT_REACTIONS_RECEIVED: 1.5,
    InteractionKind.STORY_VIEWS_GIVEN: 1.0,
    InteractionKind.STORY_VIEWS_RECEIVED: 1.2,
    InteractionKind.BROADCAST_VIEWS: 2.0,
    # In-person time together is the strongest signal we observe
    InteractionKind.MEETUPS_TOGETHER: 5.0,
    InteractionKind.EVENTS_TOGETHER: 3.5,
}


class ScoringProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    interaction_weights: dict[InteractionKind, float] = Field(
        default_factory=lambda: dict(DEFAULT_INTERACTION_WEIGHTS)
    )
    time_in_content_weight: float = 0.001  # per second
    response_latency_weight: float = -0.01  # per second; faster replies score higher

    window_days: int = Field(default=30, ge=1)
    reply_window_hours: float = Field(default=48.0, gt=0)

    consistency_grace_days: float = Field(default=7.0, ge=0)
    consistency_decay_days: float = Field(default=14.0, gt=0)

    max_sub_score: float = Field(default=100.0, gt=0)
    engagement_time_cap_seconds: float = Field(default=3600.0, gt=0)
    engagement_per_interaction_cap_seconds: float = Field(default=30.0, gt=0)

    min_rank_difference: int = Field(default=1, ge=1)
    base_confidence: float = Field(default=50.0, ge=0, le=100)
    confidence_per_rank: float = Field(default=10.0, ge=0)
    max_confidence: float = Field(default=95.0, ge=0, le=100)
    suggestion_ttl_days: int = Field(default=7, ge=1)

    @field_validator("interaction_weights")
    @classmethod
    def _weights_are_complete(cls, weights: dict[InteractionKind, float]):
        if not weights:
            raise ValueError("interaction_weights must not be empty")
        missing = [kind.value for kind in InteractionKind if kind not in weights]
        if missing:
            raise ValueError(f"interaction_weights missing kinds: {', '.join(missing)}")
        bad = [kind.value for kind, weight in weights.items() if not math.isfinite(weight)]
        if bad:
            raise ValueError(f"interaction_weights must be finite: {', '.join(bad)}")
        return weights

    @field_validator("time_in_content_weight", "response_latency_weight")
    @classmethod
    def _finite(cls, value: float):
        if not math.isfinite(value):
            raise ValueError("weight must be finite")
        return value

    @model_validator(mode="after")
    def _confidence_bounds(self):
        if self.base_confidence > self.max_confidence:
            raise ValueError("base_confidence cannot exceed max_confidence")
        return self

    def weight_for(self, kind: InteractionKind) -> float:
        return self.interaction_weights[kind]
