"""
Utility modules for constants.
"""

from .constants import (
    DEFAULT_STATE_FILE,
    ENV_STATE_FILE,
    IMPROVE_INTERVAL_FRAMES,
    STATUS_REPORT_INTERVAL,
)

__all__ = [
    "DEFAULT_STATE_FILE",
    "ENV_STATE_FILE",
    "IMPROVE_INTERVAL_FRAMES",
    "STATUS_REPORT_INTERVAL",
]
