"""
Tracking data models - tracked objects with persistent identity.
"""

from dataclasses import dataclass, replace

from .detection import Detection


@dataclass(frozen=True)
class TrackedObject:
    """
    Represents a tracked object with its state across frames.

    Attributes:
        tracking_id: Opaque identifier, unique among active tracks
        detection: Latest matched detection (box smoothed for the locked target)
        estimated_speed: Latest smoothed target speed in km/h
        frame_count: Number of frames this object has been matched in
        first_seen: Clock time (seconds) of creation
        last_seen: Clock time (seconds) of the last successful match
        is_locked: True for the single user-pinned measurement subject
    """

    tracking_id: str
    detection: Detection
    estimated_speed: float
    frame_count: int
    first_seen: float
    last_seen: float
    is_locked: bool = False

    def age_ms(self, now: float) -> float:
        """Milliseconds since the last successful match."""
        return (now - self.last_seen) * 1000.0

    def with_changes(self, **changes) -> "TrackedObject":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def __str__(self) -> str:
        return (
            f"TrackedObject({self.tracking_id}, speed:{int(self.estimated_speed)} km/h, "
            f"frames:{self.frame_count})"
        )
