"""
Consolidated data models for speed tracking.

This package contains all core data structures used across the application.
"""

from .calibration import CalibrationSource
from .detection import BoundingBox, Detection, DetectionFrame, detections_from_yolo
from .speed import SpeedDirection, SpeedResult
from .tracking import TrackedObject

__all__ = [
    # Detection models
    "BoundingBox",
    # Protocols
    "CalibrationSource",
    "Detection",
    "DetectionFrame",
    # Speed models
    "SpeedDirection",
    "SpeedResult",
    # Tracking models
    "TrackedObject",
    "detections_from_yolo",
]
