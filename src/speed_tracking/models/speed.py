"""
Speed data models - direction classification and calculation results.
"""

from dataclasses import dataclass
from enum import Enum


class SpeedDirection(str, Enum):
    """Direction of the target's movement relative to the camera."""

    APPROACHING = "approaching"  # Closing distance (box grows)
    RECEDING = "receding"  # Opening distance (box shrinks)
    SIDEWAYS = "sideways"  # Crossing the frame
    STATIONARY = "stationary"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SpeedResult:
    """Result of one speed calculation for one tracked object."""

    ground_speed_kmh: float
    relative_speed_kmh: float
    target_speed_kmh: float
    confidence: float
    direction: SpeedDirection
    displacement_px: float = 0.0

    def __str__(self) -> str:
        return (
            f"SpeedResult(ground:{int(self.ground_speed_kmh)}, "
            f"rel:{int(self.relative_speed_kmh)}, "
            f"target:{int(self.target_speed_kmh)} km/h, "
            f"disp:{int(self.displacement_px)}px)"
        )
