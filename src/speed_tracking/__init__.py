"""
Speed Tracking

Estimates the speed of vehicles seen by a moving camera from per-frame
object detections and the observer's own ground speed, and learns its
calibration across sessions.

Package structure:
  models/       - Detections, tracks, speed results
  core/         - Object tracker, speed calculator, box geometry
  calibration/  - Adaptive calibration engine and JSON state store
  config/       - Configuration loading and validation
  utils/        - Constants
  session.py    - Frame pipeline and self-pacing loop
  replay.py     - Recorded-session frame source
"""

__version__ = "1.0.0"

from .calibration import CalibrationEngine, CalibrationStore
from .config import ConfigValidationError, load_config
from .core import ObjectTracker, SpeedCalculator
from .models import (
    BoundingBox,
    Detection,
    SpeedDirection,
    SpeedResult,
    TrackedObject,
)
from .session import TrackingSession

__all__ = [
    "BoundingBox",
    # Calibration
    "CalibrationEngine",
    "CalibrationStore",
    # Config
    "ConfigValidationError",
    # Models
    "Detection",
    # Core
    "ObjectTracker",
    "SpeedCalculator",
    "SpeedDirection",
    "SpeedResult",
    "TrackedObject",
    # Session
    "TrackingSession",
    "load_config",
]
