"""admirror engine settings."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


def _optional_path_env(var_name: str) -> Path | None:
    raw = os.getenv(var_name, "").strip()
    return Path(raw) if raw else None


class EngineSettings(BaseModel):
    """Tunables for the detection engine.

    Rule sets carry the per-site values; these are the engine-wide
    fallbacks and limits.
    """

    default_container_threshold: float = Field(
        default_factory=lambda: float(os.getenv("ADMIRROR_CONTAINER_THRESHOLD", "0.6"))
    )
    label_max_depth: int = Field(
        default_factory=lambda: int(os.getenv("ADMIRROR_LABEL_MAX_DEPTH", "10"))
    )
    aria_score_factor: float = 0.95
    adaptive_max_threshold: float = 0.95
    metrics_max_entries: int = Field(
        default_factory=lambda: int(os.getenv("ADMIRROR_METRICS_MAX_ENTRIES", "1000"))
    )
    metrics_path: Path | None = Field(
        default_factory=lambda: _optional_path_env("ADMIRROR_METRICS_PATH")
    )
    log_level: str = Field(default_factory=lambda: os.getenv("ADMIRROR_LOG_LEVEL", "INFO"))

    @field_validator("default_container_threshold", "aria_score_factor", "adaptive_max_threshold")
    @classmethod
    def _validate_unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("value must be within [0, 1]")
        return value

    @field_validator("label_max_depth", "metrics_max_entries")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be >= 1")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level


def configure_logging(settings: EngineSettings | None = None) -> None:
    """Apply the configured log level for scripts embedding the engine."""
    settings = settings or EngineSettings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
