"""
Speed Fusion Calculator - frame-to-frame speed estimation per tracked object.

Measures how far each tracked object's box moves between observations,
combines centroid displacement (lateral movement) with bounding-box area
change (depth proxy), then applies a median filter and exponential
smoothing for a stable readout.

Works both when the observer is moving (ground speed baseline plus the
relative estimate) and when stationary (pure displacement).
"""

import logging
import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from ..models import BoundingBox, CalibrationSource, Detection, SpeedDirection, SpeedResult
from ..utils.constants import (
    BASE_MIN_DISPLACEMENT_PX,
    DEFAULT_AREA_SCALE_FACTOR,
    DEFAULT_EMA_ALPHA,
    DEFAULT_SPEED_SCALE_FACTOR,
    DEPTH_WEIGHT,
    DIRECTION_AREA_CHANGE,
    FAST_EMA_ALPHA,
    FAST_EMA_JUMP_KMH,
    LATERAL_WEIGHT,
    MAX_TARGET_SPEED_KMH,
    MEDIAN_WINDOW_SIZE,
    MIN_FRAME_DELTA_MS,
    NOMINAL_FRAME_INTERVAL_MS,
    OBSERVER_STATIONARY_KMH,
    SIDEWAYS_MIN_DISPLACEMENT_PX,
    STATIONARY_DECAY,
    STATIONARY_THRESHOLD_KMH,
)
from .geometry import frame_diagonal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameRecord:
    """Previous observation of one tracked object."""

    box: BoundingBox
    time: float


class SpeedCalculator:
    """
    Per-object speed estimation with independent history per tracking ID.

    Args:
        calibration: Optional source of learned scale factors and EMA alpha.
            Without one the documented defaults are used.
        clock: Time source in seconds
    """

    def __init__(
        self,
        calibration: CalibrationSource | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._calibration = calibration
        self._clock = clock
        self._history: dict[str, FrameRecord] = {}
        self._smoothed: dict[str, float] = {}
        self._windows: dict[str, deque[float]] = {}

    @property
    def speed_scale_factor(self) -> float:
        if self._calibration is None:
            return DEFAULT_SPEED_SCALE_FACTOR
        return self._calibration.speed_scale_factor

    @property
    def area_scale_factor(self) -> float:
        if self._calibration is None:
            return DEFAULT_AREA_SCALE_FACTOR
        return self._calibration.area_scale_factor

    @property
    def ema_alpha(self) -> float:
        if self._calibration is None:
            return DEFAULT_EMA_ALPHA
        return self._calibration.ema_alpha

    @property
    def tracked_ids(self) -> set[str]:
        return set(self._history)

    def calculate_speed(
        self,
        tracking_id: str,
        detection: Detection,
        frame_width: int,
        frame_height: int,
        ground_speed_kmh: float,
        now: float | None = None,
    ) -> SpeedResult:
        """
        Estimate the target speed by comparing against the previous observation.

        Args:
            tracking_id: Persistent ID from the tracker
            detection: Current detection for this object
            frame_width: Frame width in pixels
            frame_height: Frame height in pixels
            ground_speed_kmh: Observer's ground speed
            now: Clock time in seconds (defaults to the calculator clock)

        Returns:
            SpeedResult; a low-confidence fallback on malformed input
        """
        try:
            return self._calculate(
                tracking_id, detection, frame_width, frame_height, ground_speed_kmh, now
            )
        except Exception as e:
            logger.error(f"Speed calculation failed for {tracking_id}: {e}", exc_info=True)
            return _fallback_result(ground_speed_kmh)

    def _calculate(
        self,
        tracking_id: str,
        detection: Detection,
        frame_width: int,
        frame_height: int,
        ground_speed: float,
        now: float | None,
    ) -> SpeedResult:
        box = detection.bounding_box
        if box.is_degenerate() or frame_width <= 0 or frame_height <= 0:
            return _fallback_result(ground_speed)

        now = self._clock() if now is None else now
        prev = self._history.get(tracking_id)

        if prev is None:
            self._history[tracking_id] = FrameRecord(box, now)
            self._smoothed[tracking_id] = ground_speed
            return SpeedResult(
                ground_speed_kmh=ground_speed,
                relative_speed_kmh=0.0,
                target_speed_kmh=ground_speed,
                confidence=0.25,
                direction=SpeedDirection.UNKNOWN,
            )

        dt_ms = (now - prev.time) * 1000.0
        if dt_ms < MIN_FRAME_DELTA_MS:
            last = self._smoothed.get(tracking_id, ground_speed)
            relative = last - ground_speed
            return SpeedResult(
                ground_speed_kmh=ground_speed,
                relative_speed_kmh=relative,
                target_speed_kmh=last,
                confidence=0.5,
                direction=_direction_from_relative(relative),
            )
        dt_sec = dt_ms / 1000.0

        # 1. Centroid displacement (lateral / vertical movement)
        dx = box.center_x - prev.box.center_x
        dy = box.center_y - prev.box.center_y
        displacement = math.hypot(dx, dy)

        area_fraction = box.area / (frame_width * frame_height)
        if displacement < _dead_zone_px(area_fraction) and ground_speed < OBSERVER_STATIONARY_KMH:
            # Negligible movement seen from a stationary observer
            self._history[tracking_id] = FrameRecord(box, now)
            smoothed = self._smoothed.get(tracking_id, 0.0) * STATIONARY_DECAY
            self._smoothed[tracking_id] = smoothed
            return SpeedResult(
                ground_speed_kmh=ground_speed,
                relative_speed_kmh=0.0,
                target_speed_kmh=smoothed,
                confidence=0.5,
                direction=SpeedDirection.STATIONARY,
                displacement_px=displacement,
            )

        diagonal = frame_diagonal(frame_width, frame_height)
        normalized_rate = (displacement / dt_sec) / diagonal
        lateral_kmh = normalized_rate * diagonal * self.speed_scale_factor

        # 2. Depth change via area ratio
        prev_area = prev.box.area
        curr_area = box.area
        depth_kmh = 0.0
        if prev_area > 0 and curr_area > 0:
            area_change_pct = (curr_area - prev_area) / prev_area * 100.0
            if abs(area_change_pct) > _depth_threshold_pct(area_fraction):
                depth_kmh = abs(area_change_pct) * self.area_scale_factor / dt_sec

        # 3. Fuse; depth is the noisier signal
        relative = lateral_kmh * LATERAL_WEIGHT + depth_kmh * DEPTH_WEIGHT

        direction = _classify_direction(displacement, prev_area, curr_area, relative)
        if direction == SpeedDirection.RECEDING:
            relative = -relative

        # 4. Absolute target speed
        target = _target_speed(ground_speed, relative, direction)

        # 5. Median over recent raw samples
        window = self._windows.setdefault(tracking_id, deque(maxlen=MEDIAN_WINDOW_SIZE))
        window.append(target)
        median = float(np.median(list(window)))

        # 6. EMA, faster when the reading jumps
        prev_smoothed = self._smoothed.get(tracking_id, median)
        alpha = FAST_EMA_ALPHA if abs(median - prev_smoothed) > FAST_EMA_JUMP_KMH else self.ema_alpha
        smoothed = alpha * median + (1 - alpha) * prev_smoothed
        self._smoothed[tracking_id] = smoothed

        confidence = _confidence(
            detection.confidence, box, frame_width, frame_height, dt_ms, displacement
        )

        self._history[tracking_id] = FrameRecord(box, now)

        return SpeedResult(
            ground_speed_kmh=ground_speed,
            relative_speed_kmh=relative,
            target_speed_kmh=smoothed,
            confidence=confidence,
            direction=direction,
            displacement_px=displacement,
        )

    def prune_history(self, active_ids: set[str]) -> None:
        """Evict state for objects the tracker no longer reports."""
        for store in (self._history, self._smoothed, self._windows):
            for tracking_id in [k for k in store if k not in active_ids]:
                del store[tracking_id]

    def reset(self) -> None:
        self._history.clear()
        self._smoothed.clear()
        self._windows.clear()


def _dead_zone_px(area_fraction: float) -> float:
    """Minimum real displacement; smaller (farther) boxes jitter more."""
    scale = 1.0 + (0.02 - min(max(area_fraction, 0.0), 0.3)) * 20
    return BASE_MIN_DISPLACEMENT_PX * min(max(scale, 0.5), 3.0)


def _depth_threshold_pct(area_fraction: float) -> float:
    """Area change needed to count as depth motion; relaxed for far boxes."""
    if area_fraction > 0.10:
        return 2.0
    return min(max(2.0 - (0.10 - area_fraction) * 15.0, 0.8), 2.0)


def _classify_direction(
    displacement: float, prev_area: float, curr_area: float, relative: float
) -> SpeedDirection:
    grew = curr_area > prev_area * (1 + DIRECTION_AREA_CHANGE)
    shrank = curr_area < prev_area * (1 - DIRECTION_AREA_CHANGE)

    if displacement > SIDEWAYS_MIN_DISPLACEMENT_PX and not grew and not shrank:
        return SpeedDirection.SIDEWAYS
    if grew:
        return SpeedDirection.APPROACHING
    if shrank:
        return SpeedDirection.RECEDING
    if relative < STATIONARY_THRESHOLD_KMH:
        return SpeedDirection.STATIONARY
    return SpeedDirection.UNKNOWN


def _target_speed(ground: float, relative: float, direction: SpeedDirection) -> float:
    magnitude = abs(relative)

    if ground < OBSERVER_STATIONARY_KMH:
        # Observer standing still: displacement is the target's own speed
        target = magnitude
    elif direction == SpeedDirection.APPROACHING:
        target = ground + magnitude
    elif direction == SpeedDirection.RECEDING:
        target = _clamp(ground - magnitude, 0.0, MAX_TARGET_SPEED_KMH)
    elif direction == SpeedDirection.SIDEWAYS:
        target = ground + magnitude * 0.5
        if abs(target - ground) < ground * 0.15:
            target = ground
    else:
        target = ground

    return _clamp(target, 0.0, MAX_TARGET_SPEED_KMH)


def _confidence(
    detection_confidence: float,
    box: BoundingBox,
    frame_width: int,
    frame_height: int,
    dt_ms: float,
    displacement: float,
) -> float:
    c = detection_confidence

    # Far-away objects give noisier estimates
    area_ratio = box.area / (frame_width * frame_height)
    if area_ratio < 0.02:
        c *= 0.5
    elif area_ratio < 0.05:
        c *= 0.7

    # Partially visible at the frame edge
    margin_x = frame_width * 0.08
    margin_y = frame_height * 0.08
    if (
        box.left < margin_x
        or box.right > frame_width - margin_x
        or box.top < margin_y
        or box.bottom > frame_height - margin_y
    ):
        c *= 0.8

    if abs(dt_ms - NOMINAL_FRAME_INTERVAL_MS) > 150:
        c *= 0.85

    # Implausibly large single-frame jumps
    if displacement > frame_width * 0.4:
        c *= 0.5

    return _clamp(c, 0.1, 1.0)


def _direction_from_relative(relative: float) -> SpeedDirection:
    if abs(relative) < STATIONARY_THRESHOLD_KMH:
        return SpeedDirection.STATIONARY
    return SpeedDirection.APPROACHING if relative > 0 else SpeedDirection.RECEDING


def _fallback_result(ground_speed: float) -> SpeedResult:
    return SpeedResult(
        ground_speed_kmh=ground_speed,
        relative_speed_kmh=0.0,
        target_speed_kmh=ground_speed,
        confidence=0.1,
        direction=SpeedDirection.UNKNOWN,
    )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
