"""Configuration management for flowpilot."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


class Config(BaseModel):
    """Application configuration."""

    # API Keys
    anthropic_api_key: str = Field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", "")
    )

    # Model settings
    judge_model: str = Field(default="claude-haiku-4-5-20251001")
    reasoning_model: str = Field(default="claude-haiku-4-5-20251001")

    # Timeouts (seconds)
    judge_timeout: float = Field(
        default=20.0, description="Timeout for a single remote judgment call"
    )
    step_timeout: float = Field(
        default=30.0, description="Timeout for a single executor call"
    )

    # Environment signals
    is_ci: bool = Field(default_factory=lambda: _env_flag("CI"))

    # Screenshot settings
    screenshots_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("SCREENSHOTS_DIR", "./data/screenshots")
        )
    )
    save_screenshots: bool = Field(default=True)

    # Browser settings
    headless: bool = Field(default=False)
    viewport_width: int = Field(default=1280)
    viewport_height: int = Field(default=720)
    storage_state: Path | None = Field(default=None, description="Path to storage state JSON for session persistence")

    # Recovery settings
    enable_recovery: bool = Field(default=True)
    max_recovery_attempts: int = Field(default=2)
    recovery_wait_seconds: float = Field(default=5.0)
    error_history_size: int = Field(default=100)
    max_alternatives: int = Field(default=3)

    # Solution store settings
    solutions_persist_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("SOLUTIONS_PERSIST_DIR", "./data/solutions")
        )
    )
    solution_min_relevance: float = Field(
        default=0.3, description="Minimum relevance for a stored solution to be offered"
    )
    solution_high_confidence: float = Field(
        default=0.7, description="Confidence bar a match must reach for critical urgency"
    )
    solution_fuzzy_threshold: float = Field(
        default=0.6, description="Minimum embedding similarity for fuzzy matches"
    )
    solution_max_results: int = Field(default=5)
    deprecation_threshold: float = Field(
        default=0.2, description="Success rate at or below which a solution is deprecated"
    )
    deprecation_min_uses: int = Field(
        default=10, description="Uses required before deprecation is considered"
    )
    evolution_failure_streak: int = Field(
        default=3, description="Consecutive failures that trigger solution evolution"
    )

    # Logging settings
    log_level: str = Field(default="INFO")

    class Config:
        arbitrary_types_allowed = True
