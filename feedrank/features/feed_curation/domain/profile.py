"""
Weight and lookup tables for engagement prediction and feed curation.
"""

import math
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import ContentKind

_SUM_TOLERANCE = 1e-6


def _check_sums_to_one(name: str, values: list[float]) -> None:
    if any(not math.isfinite(v) or v < 0 for v in values):
        raise ValueError(f"{name} must be finite and non-negative")
    if abs(sum(values) - 1.0) > _SUM_TOLERANCE:
        raise ValueError(f"{name} must sum to 1.0, got {sum(values):.6f}")


def _check_all_kinds(name: str, table: dict[ContentKind, object]) -> None:
    missing = [kind.value for kind in ContentKind if kind not in table]
    if missing:
        raise ValueError(f"{name} missing kinds: {', '.join(missing)}")


class EngagementBaseline(BaseModel):
    model_config = ConfigDict(frozen=True)

    reactions: float = Field(..., ge=0)
    comments: float = Field(..., ge=0)


class LengthBand(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_chars: int = Field(..., ge=0)
    max_chars: int = Field(..., ge=0)
    factor: float = Field(..., ge=0, le=1)


class RecencyBand(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_age_hours: float = Field(..., gt=0)
    boost: float = Field(..., ge=0, le=1)


def _default_hour_factors() -> list[float]:
    factors = []
    for hour in range(24):
        if 7 <= hour <= 9 or 17 <= hour <= 21:
            factors.append(1.0)  # morning and evening peaks
        elif 12 <= hour <= 14:
            factors.append(0.9)  # lunch
        elif 22 <= hour <= 23:
            factors.append(0.8)  # late evening
        else:
            factors.append(0.6)
    return factors


class PredictionProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    author_weight: float = 0.4
    kind_weight: float = 0.3
    timing_weight: float = 0.2
    length_weight: float = 0.1

    # Timing/length factors are 0..1; these scale them to reaction/comment counts
    reaction_factor_scale: float = Field(default=10.0, ge=0)
    comment_factor_scale: float = Field(default=5.0, ge=0)

    reaction_share: float = 0.6
    comment_share: float = 0.4

    full_confidence_data_points: int = Field(default=20, ge=1)
    author_history_limit: int = Field(default=20, ge=1)

    kind_baselines: dict[ContentKind, EngagementBaseline] = Field(
        default_factory=lambda: {
            ContentKind.POST: EngagementBaseline(reactions=2.5, comments=0.5),
            ContentKind.POLL: EngagementBaseline(reactions=4.0, comments=1.2),
            ContentKind.EVENT: EngagementBaseline(reactions=3.2, comments=0.8),
            ContentKind.BROADCAST: EngagementBaseline(reactions=5.0, comments=2.0),
        }
    )
    author_baseline: EngagementBaseline = Field(
        default_factory=lambda: EngagementBaseline(reactions=1.0, comments=0.2)
    )

    hour_factors: list[float] = Field(default_factory=_default_hour_factors)
    timezone: str = "UTC"
    length_bands: list[LengthBand] = Field(
        default_factory=lambda: [
            LengthBand(min_chars=50, max_chars=200, factor=1.0),
            LengthBand(min_chars=20, max_chars=300, factor=0.8),
            LengthBand(min_chars=10, max_chars=500, factor=0.6),
        ]
    )
    length_fallback: float = Field(default=0.4, ge=0, le=1)

    @field_validator("hour_factors")
    @classmethod
    def _hour_table(cls, factors: list[float]):
        if len(factors) != 24:
            raise ValueError("hour_factors needs exactly 24 entries")
        if any(not 0 <= f <= 1 for f in factors):
            raise ValueError("hour_factors entries must be within 0..1")
        return factors

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str):
        if value == "UTC":
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @field_validator("length_bands")
    @classmethod
    def _length_bands(cls, bands: list[LengthBand]):
        if not bands:
            raise ValueError("length_bands must not be empty")
        if any(band.min_chars > band.max_chars for band in bands):
            raise ValueError("length band min_chars cannot exceed max_chars")
        return bands

    @model_validator(mode="after")
    def _mixing_weights(self):
        _check_sums_to_one(
            "prediction mixing weights",
            [self.author_weight, self.kind_weight, self.timing_weight, self.length_weight],
        )
        _check_sums_to_one("reaction/comment shares", [self.reaction_share, self.comment_share])
        _check_all_kinds("kind_baselines", self.kind_baselines)
        return self


class CurationProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    rank_weight: float = 0.35
    engagement_weight: float = 0.30
    recency_weight: float = 0.20
    kind_weight: float = 0.15

    kind_weights: dict[ContentKind, float] = Field(
        default_factory=lambda: {
            ContentKind.POST: 1.0,
            ContentKind.POLL: 1.2,  # interactive
            ContentKind.EVENT: 1.1,
            ContentKind.BROADCAST: 0.9,
        }
    )

    max_rank: int = Field(default=28, ge=2)
    min_rank_weight: float = Field(default=0.1, gt=0, le=1)

    recency_bands: list[RecencyBand] = Field(
        default_factory=lambda: [
            RecencyBand(max_age_hours=1, boost=1.0),
            RecencyBand(max_age_hours=6, boost=0.8),
            RecencyBand(max_age_hours=24, boost=0.6),
            RecencyBand(max_age_hours=72, boost=0.4),
        ]
    )
    recency_floor: float = Field(default=0.2, ge=0, le=1)

    per_author_kind_cap: int = Field(default=3, ge=1)
    kind_share_cap: float = Field(default=0.5, gt=0, le=1)
    pool_multiplier: int = Field(default=3, ge=1)

    target_distribution: dict[ContentKind, float] = Field(
        default_factory=lambda: {
            ContentKind.POST: 0.60,
            ContentKind.POLL: 0.20,
            ContentKind.EVENT: 0.15,
            ContentKind.BROADCAST: 0.05,
        }
    )

    high_rank_threshold: float = 0.8
    engagement_label_threshold: float = 3.0
    recent_threshold: float = 0.8

    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    @field_validator("recency_bands")
    @classmethod
    def _ordered_bands(cls, bands: list[RecencyBand]):
        if not bands:
            raise ValueError("recency_bands must not be empty")
        for earlier, later in zip(bands, bands[1:]):
            if later.max_age_hours <= earlier.max_age_hours:
                raise ValueError("recency_bands must be ordered by increasing age")
            if later.boost > earlier.boost:
                raise ValueError("recency_bands boosts must not increase with age")
        return bands

    @field_validator("kind_weights")
    @classmethod
    def _kind_weights(cls, weights: dict[ContentKind, float]):
        _check_all_kinds("kind_weights", weights)
        if any(not math.isfinite(w) or w < 0 for w in weights.values()):
            raise ValueError("kind_weights must be finite and non-negative")
        return weights

    @model_validator(mode="after")
    def _mixing_weights(self):
        _check_sums_to_one(
            "curation weights",
            [self.rank_weight, self.engagement_weight, self.recency_weight, self.kind_weight],
        )
        _check_all_kinds("target_distribution", self.target_distribution)
        _check_sums_to_one("target_distribution", list(self.target_distribution.values()))
        if self.recency_floor > self.recency_bands[-1].boost:
            raise ValueError("recency_floor cannot exceed the oldest band's boost")
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self
