"""
Configuration management for the test-generation reward pipeline.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TESTGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="TestGen RL Pipeline")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # Database
    database_url: str = Field(default="sqlite:///./testgen_rl.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Reward weights (code quality / test execution / reasoning)
    reward_weight_code_quality: float = Field(default=0.5, ge=0.0)
    reward_weight_test_execution: float = Field(default=0.4, ge=0.0)
    reward_weight_reasoning: float = Field(default=0.1, ge=0.0)
    high_quality_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    medium_quality_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    # Training readiness (counts of high-quality examples)
    training_data_min_examples: int = Field(default=3, ge=0)
    fine_tuning_min_examples: int = Field(default=10, ge=0)

    # Flakiness tracking
    flakiness_history_capacity: int = Field(default=10, ge=1)
    flakiness_window: int = Field(default=5, ge=1)

    # Collaborator calls
    collaborator_max_retries: int = Field(default=2, ge=0)
    collaborator_timeout_seconds: float = Field(default=60.0, gt=0)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)

    # Model versioning
    initial_model_version: str = Field(default="gemini-1.5-flash-v1.0")

    # Workflow Configuration
    max_concurrent_workflows: int = Field(default=5, ge=1)

    # Publishing
    default_parent_ticket: Optional[str] = Field(default=None)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
