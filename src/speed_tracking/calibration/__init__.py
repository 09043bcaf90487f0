"""
Adaptive calibration - learned tunables, persistence, improvement cycle.
"""

from .engine import CalibrationEngine
from .state import TUNABLE_RANGES, CalibrationState
from .store import CalibrationStore

__all__ = [
    "TUNABLE_RANGES",
    "CalibrationEngine",
    "CalibrationState",
    "CalibrationStore",
]
