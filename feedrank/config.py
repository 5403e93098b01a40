import json
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from feedrank.features.feed_curation.domain.profile import CurationProfile, PredictionProfile
from feedrank.features.friend_ranking.domain.profile import ScoringProfile
from feedrank.models.domain.pipeline_domain import ProfileConfigurationError

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Only required once the connection pool is initialized
    DATABASE_URL: str | None = None

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # =================================================================
    # RANKING / CURATION RUNTIME
    # =================================================================
    EXTERNAL_FETCH_TIMEOUT_SECONDS: float = 2.0
    RANK_RECOMPUTE_INTERVAL_MINUTES: int = 60
    MAX_CONCURRENT_VIEWERS: int = 5
    MAX_CONCURRENT_PAIR_FETCHES: int = 8

    # Optional JSON file with "scoring", "prediction" and "curation" sections
    RANKING_PROFILE_PATH: str | None = None

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config


@dataclass(frozen=True, slots=True)
class RankingProfiles:
    """The weight tables one process runs with."""

    scoring: ScoringProfile
    prediction: PredictionProfile
    curation: CurationProfile


def load_ranking_profiles(path: str | None = None) -> RankingProfiles:
    """
    Build the validated weight profiles.

    Sections missing from the file fall back to the built-in defaults.
    Any malformed table raises ProfileConfigurationError so the process
    refuses to start instead of failing on the first request.
    """
    overrides: dict = {}
    if path:
        try:
            overrides = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ProfileConfigurationError(f"Cannot read ranking profile {path}: {exc}") from exc
        if not isinstance(overrides, dict):
            raise ProfileConfigurationError(f"Ranking profile {path} must be a JSON object")

    try:
        return RankingProfiles(
            scoring=ScoringProfile.model_validate(overrides.get("scoring", {})),
            prediction=PredictionProfile.model_validate(overrides.get("prediction", {})),
            curation=CurationProfile.model_validate(overrides.get("curation", {})),
        )
    except ValidationError as exc:
        raise ProfileConfigurationError(f"Invalid ranking profile: {exc}") from exc


settings = Settings()
ranking_profiles = load_ranking_profiles(settings.RANKING_PROFILE_PATH)
