"""
Configuration settings for the adaptive assessment engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Named thresholds. Settings default to these; they are not meant to be
# tuned per organization yet.
MASTERY_THRESHOLD = 0.8
KEYWORD_MATCH_THRESHOLD = 0.5


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///assessment.db",
        description="SQLAlchemy connection string for the topic/question store",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Mastery & Evaluation
    # ========================================
    mastery_threshold: float = Field(
        default=MASTERY_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Mastery level at or above which a topic counts as mastered",
    )
    keyword_match_threshold: float = Field(
        default=KEYWORD_MATCH_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Fraction of expected keywords an open-ended answer must contain",
    )

    # ========================================
    # Question Selection
    # ========================================
    default_max_questions: int = Field(
        default=5,
        ge=0,
        description="Questions per session when the caller passes no cap",
    )
    adaptive_topic_limit: int = Field(
        default=3,
        ge=1,
        description="Topics drawn from by the topic-adaptive strategy",
    )
    fuzzy_attempt_matching: bool = Field(
        default=True,
        description="Match legacy attempts without stable question ids by text prefix",
    )
    use_fallback_questions: bool = Field(
        default=True,
        description="Serve the built-in question set when nothing else is selectable",
    )

    def get_selection_config(self) -> dict[str, object]:
        """Get question selection configuration as a dictionary."""
        return {
            "mastery_threshold": self.mastery_threshold,
            "adaptive_topic_limit": self.adaptive_topic_limit,
            "fuzzy_attempt_matching": self.fuzzy_attempt_matching,
            "use_fallback_questions": self.use_fallback_questions,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
