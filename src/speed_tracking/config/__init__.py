"""
Configuration loading and validation.

- load_config: Find, parse and validate the YAML config
- apply_env_overrides: Apply environment variable overrides

Pydantic schemas available for type-safe validation:
- Config: Complete configuration schema
- validate_config_pydantic: Validate and parse config to Pydantic model
"""

from .loader import (
    ConfigValidationError,
    apply_env_overrides,
    find_config_file,
    load_config,
)
from .schemas import (
    CalibrationConfig,
    Config,
    LoggingConfig,
    SessionConfig,
    TrackingConfig,
    validate_config_pydantic,
)

__all__ = [
    "CalibrationConfig",
    "Config",
    # Exception
    "ConfigValidationError",
    "LoggingConfig",
    "SessionConfig",
    "TrackingConfig",
    # Config loading
    "apply_env_overrides",
    "find_config_file",
    "load_config",
    "validate_config_pydantic",
]
