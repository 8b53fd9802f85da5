"""
Application configuration using Pydantic Settings.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ScoringDefaults(BaseSettings):
    """Default relevance weights, used for every user without a learned config."""

    model_config = SettingsConfigDict(env_prefix="SCORING_")

    # Component weights for the composite relevance score
    weight_topic_match: float = Field(default=0.4, ge=0.0, le=1.0)
    weight_category_match: float = Field(default=0.3, ge=0.0, le=1.0)
    weight_source_type_match: float = Field(default=0.15, ge=0.0, le=1.0)
    weight_recency: float = Field(default=0.1, ge=0.0, le=1.0)
    weight_quality: float = Field(default=0.05, ge=0.0, le=1.0)

    # Recency step function (score per age tier)
    recency_hourly: float = Field(default=1.0, ge=0.0, le=1.0)
    recency_daily: float = Field(default=0.9, ge=0.0, le=1.0)
    recency_weekly: float = Field(default=0.7, ge=0.0, le=1.0)
    recency_monthly: float = Field(default=0.5, ge=0.0, le=1.0)
    recency_older: float = Field(default=0.2, ge=0.0, le=1.0)

    # Diversification defaults
    max_per_category: int = Field(default=3, ge=1)
    max_per_source: int = Field(default=2, ge=1)


class LearningSettings(BaseSettings):
    """Parameters of the feedback loop that adapts scoring weights."""

    model_config = SettingsConfigDict(env_prefix="LEARNING_")

    feedback_threshold: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Mean absolute prediction error that triggers a learning cycle",
    )
    adaptation_rate: float = Field(
        default=0.05,
        ge=0.0,
        le=0.5,
        description="Step applied to a scoring weight per learning cycle",
    )
    evaluation_window: int = Field(
        default=100,
        ge=10,
        description="Interaction records kept per user (oldest evicted first)",
    )

    min_interactions: int = Field(default=10, ge=1)
    periodic_min_interactions: int = Field(default=20, ge=1)
    periodic_interval_hours: float = Field(default=24.0, gt=0)

    weight_floor: float = Field(default=0.05, ge=0.0, le=1.0)
    weight_ceiling: float = Field(default=0.8, ge=0.0, le=1.0)


class BreakingNewsSettings(BaseSettings):
    """Breaking news detection and notification parameters."""

    model_config = SettingsConfigDict(env_prefix="BREAKING_")

    threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Composite score at which content counts as breaking news",
    )
    notification_cooldown_minutes: int = Field(default=30, ge=0)
    tracker_window_hours: int = Field(default=24, ge=1)
    notification_history_days: int = Field(default=7, ge=1)


class FocusAreaSettings(BaseSettings):
    """Focus area limits and matching weights."""

    model_config = SettingsConfigDict(env_prefix="FOCUS_")

    max_focus_areas: int = Field(default=10, ge=1)
    minimum_pass_score: float = Field(default=0.3, ge=0.0, le=1.0)

    weight_topic_match: float = Field(default=0.4, ge=0.0, le=1.0)
    weight_category_match: float = Field(default=0.3, ge=0.0, le=1.0)
    weight_keyword_match: float = Field(default=0.2, ge=0.0, le=1.0)
    weight_source_type_match: float = Field(default=0.1, ge=0.0, le=1.0)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Personalization Core"
    app_version: str = "0.1.0"
    debug: bool = Field(default=False)
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = Field(default="INFO")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./personalization.db",
        description="Async database URL (SQLAlchemy format)",
    )

    # Scheduler
    maintenance_interval_minutes: int = Field(
        default=60,
        description="Interval for decay, tracker pruning and due learning cycles",
    )

    # Nested groups
    scoring: ScoringDefaults = Field(default_factory=ScoringDefaults)
    learning: LearningSettings = Field(default_factory=LearningSettings)
    breaking_news: BreakingNewsSettings = Field(default_factory=BreakingNewsSettings)
    focus_areas: FocusAreaSettings = Field(default_factory=FocusAreaSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
