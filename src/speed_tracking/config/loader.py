"""
Configuration loading - YAML file discovery, env overrides, validation.
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..utils.constants import ENV_STATE_FILE
from .schemas import Config, validate_config_pydantic

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "speed_tracking.yaml"


class ConfigValidationError(Exception):
    """Raised when config loading or validation fails."""


def find_config_file(config_path: str | None = None) -> Path | None:
    """
    Find config file in standard locations.

    Search order:
    1. Specified path (must exist)
    2. Current directory (speed_tracking.yaml)
    3. ~/.config/speed-tracking/config.yaml

    Returns:
        Path to config file, or None to use built-in defaults

    Raises:
        ConfigValidationError: If an explicitly specified file is missing
    """
    if config_path:
        specified = Path(config_path)
        if not specified.exists():
            raise ConfigValidationError(f"Specified config file not found: {config_path}")
        return specified

    search_paths = [
        Path.cwd() / DEFAULT_CONFIG_NAME,
        Path.home() / ".config" / "speed-tracking" / "config.yaml",
    ]
    for path in search_paths:
        if path.exists():
            logger.info(f"Using config: {path}")
            return path

    logger.info("No config file found, using defaults")
    return None


def apply_env_overrides(config: dict) -> dict:
    """
    Apply environment variable overrides.

    Args:
        config: Raw configuration dictionary

    Returns:
        Configuration with environment variables applied
    """
    if ENV_STATE_FILE in os.environ:
        logger.info(f"Using calibration state file from environment: {ENV_STATE_FILE}")
        config.setdefault("calibration", {})["state_file"] = os.environ[ENV_STATE_FILE]
    return config


def load_config(config_path: str | None = None) -> Config:
    """
    Load, override and validate configuration.

    Args:
        config_path: Optional explicit path to a YAML config file

    Returns:
        Validated Config

    Raises:
        ConfigValidationError: If the file is missing, not valid YAML or
            fails schema validation
    """
    config_file = find_config_file(config_path)

    raw: dict = {}
    if config_file is not None:
        try:
            with open(config_file, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Invalid YAML in {config_file}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigValidationError(f"{config_file} must contain a mapping")
        logger.info(f"Configuration loaded from {config_file}")

    raw = apply_env_overrides(raw)

    try:
        return validate_config_pydantic(raw)
    except ValidationError as e:
        raise ConfigValidationError(f"Configuration validation failed:\n{e}") from e
