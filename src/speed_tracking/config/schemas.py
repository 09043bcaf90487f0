"""
Pydantic schemas for configuration validation.

Provides type-safe, declarative validation with clear error messages.
Every section is optional; an empty file yields the built-in defaults.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.constants import (
    DEFAULT_STATE_FILE,
    DETECTION_TIMEOUT_SECONDS,
    IMPROVE_INTERVAL_FRAMES,
)


class StrictModel(BaseModel):
    """Base model that rejects unknown fields."""

    model_config = ConfigDict(extra="forbid")


class CalibrationConfig(StrictModel):
    """Calibration persistence settings."""

    state_file: str = Field(
        default=DEFAULT_STATE_FILE, description="JSON file holding learned parameters"
    )
    persist: bool = Field(default=True, description="Write learned state to disk")

    @field_validator("state_file")
    @classmethod
    def validate_state_file(cls, v: str) -> str:
        if not v.endswith(".json"):
            raise ValueError("State file must be .json")
        return v


class SessionConfig(StrictModel):
    """Processing loop settings."""

    improve_interval_frames: int = Field(
        default=IMPROVE_INTERVAL_FRAMES,
        gt=0,
        description="Frames between background calibration cycles",
    )
    detection_timeout_seconds: float = Field(
        default=DETECTION_TIMEOUT_SECONDS, gt=0, description="Per-frame detection timeout"
    )
    realtime: bool = Field(
        default=False, description="Pace frames by the learned frame delay"
    )


class TrackingConfig(StrictModel):
    """Target selection settings."""

    lock_primary: bool = Field(
        default=False, description="Lock the primary object once it appears"
    )


class LoggingConfig(StrictModel):
    """Logging settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class Config(StrictModel):
    """Complete configuration schema."""

    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def validate_config_pydantic(config: dict) -> Config:
    """
    Validate configuration using Pydantic.

    Args:
        config: Raw configuration dictionary

    Returns:
        Validated Config object

    Raises:
        pydantic.ValidationError: If validation fails
    """
    return Config(**config)
