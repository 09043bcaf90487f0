"""
CalibrationSource Protocol - the tunables read by the tracking pipeline.

The speed calculator and session accept any object implementing this
protocol. When none is supplied they fall back to documented defaults.
"""

from typing import Protocol


class CalibrationSource(Protocol):
    """Read-only view of the learned tuning parameters."""

    @property
    def speed_scale_factor(self) -> float:
        """px/s -> km/h scaling for lateral displacement."""
        ...

    @property
    def area_scale_factor(self) -> float:
        """Area-change %/s -> km/h scaling for depth change."""
        ...

    @property
    def ema_alpha(self) -> float:
        """Smoothing factor for the speed readout."""
        ...

    @property
    def detection_confidence_floor(self) -> float:
        """Minimum confidence for non-fallback detections."""
        ...

    @property
    def frame_delay_ms(self) -> int:
        """Pause between frames of the self-pacing loop."""
        ...

    @property
    def plate_vote_threshold(self) -> int:
        """Votes a plate read needs before it is reported."""
        ...
