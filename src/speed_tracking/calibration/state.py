"""
Calibration state - learned tunables plus lifetime accumulators.

Serialized as one flat key/value record so every tunable and accumulator
has its own entry. Missing keys fall back to defaults and tunables are
clamped to their valid range on load.
"""

from dataclasses import dataclass, fields
from typing import Any

from ..utils.constants import (
    AREA_SCALE_RANGE,
    DEFAULT_AREA_SCALE_FACTOR,
    DEFAULT_DETECTION_CONFIDENCE_FLOOR,
    DEFAULT_EMA_ALPHA,
    DEFAULT_FRAME_DELAY_MS,
    DEFAULT_OCR_CROP_PAD_BOT,
    DEFAULT_OCR_CROP_PAD_X,
    DEFAULT_PLATE_VOTE_THRESHOLD,
    DEFAULT_SPEED_SCALE_FACTOR,
    DETECTION_FLOOR_RANGE,
    EMA_ALPHA_RANGE,
    FRAME_DELAY_RANGE,
    OCR_PAD_BOT_RANGE,
    OCR_PAD_X_RANGE,
    PLATE_VOTE_RANGE,
    SPEED_SCALE_RANGE,
)

KEY_PREFIX = "adaptive_"

TUNABLE_RANGES: dict[str, tuple[float, float]] = {
    "speed_scale_factor": SPEED_SCALE_RANGE,
    "area_scale_factor": AREA_SCALE_RANGE,
    "ema_alpha": EMA_ALPHA_RANGE,
    "detection_confidence_floor": DETECTION_FLOOR_RANGE,
    "frame_delay_ms": FRAME_DELAY_RANGE,
    "plate_vote_threshold": PLATE_VOTE_RANGE,
    "ocr_crop_pad_x": OCR_PAD_X_RANGE,
    "ocr_crop_pad_bot": OCR_PAD_BOT_RANGE,
}


@dataclass
class CalibrationState:
    """Everything the calibration engine persists."""

    # Tunables
    speed_scale_factor: float = DEFAULT_SPEED_SCALE_FACTOR
    area_scale_factor: float = DEFAULT_AREA_SCALE_FACTOR
    ema_alpha: float = DEFAULT_EMA_ALPHA
    detection_confidence_floor: float = DEFAULT_DETECTION_CONFIDENCE_FLOOR
    frame_delay_ms: int = DEFAULT_FRAME_DELAY_MS
    plate_vote_threshold: int = DEFAULT_PLATE_VOTE_THRESHOLD
    ocr_crop_pad_x: float = DEFAULT_OCR_CROP_PAD_X
    ocr_crop_pad_bot: float = DEFAULT_OCR_CROP_PAD_BOT

    # Lifetime accumulators
    speed_error_sum: float = 0.0
    speed_sample_count: int = 0
    variance_sum: float = 0.0
    variance_samples: int = 0
    ocr_success_count: int = 0
    ocr_total_count: int = 0
    detection_flicker_count: int = 0
    detection_stable_count: int = 0
    total_sessions: int = 0
    total_frames: int = 0
    last_improve_time: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Flat record keyed by prefixed field names."""
        return {f"{KEY_PREFIX}{f.name}": getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CalibrationState":
        """
        Deserialize from a flat record.

        Unknown keys are ignored, missing keys default, values are coerced
        to the field's type and tunables are clamped into range.

        Raises:
            ValueError/TypeError: If a present value cannot be coerced
        """
        defaults = cls()
        values: dict[str, Any] = {}

        for f in fields(cls):
            key = f"{KEY_PREFIX}{f.name}"
            default = getattr(defaults, f.name)
            raw = data.get(key)
            if raw is None:
                values[f.name] = default
            elif f.name == "last_improve_time":
                values[f.name] = str(raw)
            elif isinstance(default, int):
                values[f.name] = int(round(float(raw)))
            else:
                values[f.name] = float(raw)

        for name, (low, high) in TUNABLE_RANGES.items():
            values[name] = type(values[name])(max(low, min(high, values[name])))

        return cls(**values)

    def copy(self) -> "CalibrationState":
        return CalibrationState(**{f.name: getattr(self, f.name) for f in fields(self)})
