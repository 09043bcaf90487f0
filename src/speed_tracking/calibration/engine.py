"""
Adaptive Calibration Engine - unsupervised online tuning.

Accumulates agreement/quality signals while a session runs and
periodically adjusts every tunable the tracker, speed calculator and
session read:

1. Speed calibration - compares vision relative speed against ground
   speed and nudges the px->km/h and area->km/h scale factors.
2. EMA smoothing - adapts the readout alpha to the variance of recent
   errors.
3. OCR parameters - crop padding and plate vote threshold from the
   plate-read hit rate and from user corrections.
4. Detection floor - raises/lowers the confidence floor from how often
   the detected-object count flickers.
5. Frame timing - learns a frame delay that fits the hardware.

Learned state persists across runs through a CalibrationStore.
"""

import logging
import math
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any

import numpy as np

from ..utils.constants import (
    AREA_SCALE_RANGE,
    DETECTION_FLOOR_RANGE,
    EMA_ALPHA_RANGE,
    FRAME_DELAY_RANGE,
    FRAME_TIMING_WINDOW,
    MIN_DETECTION_SAMPLES,
    MIN_OCR_SAMPLES,
    MIN_SPEED_SAMPLES,
    MIN_TIMING_SAMPLES,
    MIN_VARIANCE_SAMPLES,
    OCR_PAD_BOT_RANGE,
    OCR_PAD_X_RANGE,
    PLATE_VOTE_RANGE,
    SPEED_ERROR_WINDOW,
    SPEED_SCALE_RANGE,
)
from .state import CalibrationState
from .store import CalibrationStore

logger = logging.getLogger(__name__)


class CalibrationEngine:
    """
    Learns tuning parameters from live observations.

    Feed methods and getters are safe to call from the frame path while an
    improvement cycle runs on another thread; cycles themselves never
    overlap.

    Args:
        store: Where to load/persist state. None keeps state in memory only.
    """

    def __init__(self, store: CalibrationStore | None = None):
        self._store = store
        self._state = store.load() if store is not None else CalibrationState()
        self._lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._reset_session_state()

    # ------------------------------------------------------------------
    # Tunables (read by tracker, calculator and session)
    # ------------------------------------------------------------------

    @property
    def speed_scale_factor(self) -> float:
        return self._state.speed_scale_factor

    @property
    def area_scale_factor(self) -> float:
        return self._state.area_scale_factor

    @property
    def ema_alpha(self) -> float:
        return self._state.ema_alpha

    @property
    def detection_confidence_floor(self) -> float:
        return self._state.detection_confidence_floor

    @property
    def frame_delay_ms(self) -> int:
        return self._state.frame_delay_ms

    @property
    def plate_vote_threshold(self) -> int:
        return self._state.plate_vote_threshold

    @property
    def ocr_crop_pad_x(self) -> float:
        return self._state.ocr_crop_pad_x

    @property
    def ocr_crop_pad_bot(self) -> float:
        return self._state.ocr_crop_pad_bot

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    @property
    def total_sessions(self) -> int:
        return self._state.total_sessions

    @property
    def total_frames(self) -> int:
        return self._state.total_frames + self._session_frames

    @property
    def session_ocr_hit_rate(self) -> float:
        if self._session_ocr_total == 0:
            return 0.0
        return self._session_ocr_success / self._session_ocr_total

    @property
    def lifetime_ocr_hit_rate(self) -> float:
        if self._state.ocr_total_count == 0:
            return 0.0
        return self._state.ocr_success_count / self._state.ocr_total_count

    @property
    def lifetime_speed_error(self) -> float:
        """Mean signed speed error (km/h); positive means vision overestimates."""
        if self._state.speed_sample_count == 0:
            return 0.0
        return self._state.speed_error_sum / self._state.speed_sample_count

    def state_snapshot(self) -> CalibrationState:
        with self._lock:
            return self._state.copy()

    def learned_parameters(self) -> dict[str, Any]:
        """Summary of learned parameters for display and debugging."""
        s = self._state
        return {
            "speed_scale": round(s.speed_scale_factor, 5),
            "area_scale": round(s.area_scale_factor, 3),
            "ema_alpha": round(s.ema_alpha, 3),
            "plate_vote_threshold": s.plate_vote_threshold,
            "ocr_pad_x": f"{s.ocr_crop_pad_x * 100:.1f}%",
            "ocr_pad_bot": f"{s.ocr_crop_pad_bot * 100:.1f}%",
            "detection_floor": round(s.detection_confidence_floor, 2),
            "frame_delay_ms": s.frame_delay_ms,
            "total_sessions": s.total_sessions,
            "total_frames": self.total_frames,
            "ocr_hit_rate": f"{self.lifetime_ocr_hit_rate * 100:.1f}%",
            "avg_speed_error": f"{self.lifetime_speed_error:.1f} km/h",
            "last_improve_time": s.last_improve_time,
        }

    # ------------------------------------------------------------------
    # Feed methods
    # ------------------------------------------------------------------

    def feed_speed_observation(
        self, relative_kmh: float, ground_kmh: float, target_kmh: float
    ) -> bool:
        """
        Feed a vision speed reading for scale calibration.

        Only readings taken while the observer moves at >= 10 km/h with a
        non-trivial relative estimate are used. Passing a stationary object
        is the reference case: its relative speed should equal ground speed.

        Returns:
            True if the observation was accepted
        """
        if ground_kmh < 10 or abs(relative_kmh) < 1:
            return False

        signed_error = abs(relative_kmh) - ground_kmh
        with self._lock:
            self._session_speed_error_sum += signed_error
            self._session_speed_samples += 1
            self._recent_errors.append(abs(signed_error))
        return True

    def feed_frame_timing(self, processing_ms: float) -> None:
        """Feed one frame's end-to-end latency."""
        with self._lock:
            self._frame_times.append(processing_ms)
            self._session_frames += 1

    def feed_detection_stability(self, object_count: int) -> None:
        """Feed the number of objects detected this frame."""
        with self._lock:
            if self._last_detection_count is not None and object_count != self._last_detection_count:
                self._session_flickers += 1
            else:
                self._session_stable += 1
            self._last_detection_count = object_count

    def feed_ocr_result(self, success: bool) -> None:
        with self._lock:
            self._session_ocr_total += 1
            if success:
                self._session_ocr_success += 1

    def feed_plate_correction(self, was_correct: bool) -> None:
        """
        Feed whether a confirmed plate matched the recognized one.

        Correct reads tighten the crop and demand more votes; wrong reads
        widen the crop and accept fewer votes. Applied and persisted at once.
        """
        with self._lock:
            self._session_ocr_total += 1
            s = self._state
            if was_correct:
                self._session_ocr_success += 1
                s.ocr_crop_pad_x = _clamp(s.ocr_crop_pad_x - 0.003, *OCR_PAD_X_RANGE)
                s.ocr_crop_pad_bot = _clamp(s.ocr_crop_pad_bot - 0.003, *OCR_PAD_BOT_RANGE)
                s.plate_vote_threshold = min(s.plate_vote_threshold + 1, PLATE_VOTE_RANGE[1])
            else:
                s.ocr_crop_pad_x = _clamp(s.ocr_crop_pad_x + 0.008, *OCR_PAD_X_RANGE)
                s.ocr_crop_pad_bot = _clamp(s.ocr_crop_pad_bot + 0.008, *OCR_PAD_BOT_RANGE)
                s.plate_vote_threshold = max(s.plate_vote_threshold - 1, PLATE_VOTE_RANGE[0])
            snapshot = s.copy()

        logger.debug(
            f"Plate correction: was_correct={was_correct} -> "
            f"pad_x={snapshot.ocr_crop_pad_x:.3f} pad_bot={snapshot.ocr_crop_pad_bot:.3f} "
            f"votes={snapshot.plate_vote_threshold}"
        )
        self._persist(snapshot)

    # ------------------------------------------------------------------
    # Improvement cycle
    # ------------------------------------------------------------------

    def improve_and_persist(self) -> bool:
        """
        Run one improvement cycle and persist the result.

        Call at session end and periodically during long sessions. A call
        made while another cycle is running returns immediately.

        Returns:
            True if a cycle ran, False if skipped or failed
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Improvement cycle already running, skipping")
            return False

        try:
            with self._lock:
                self._improve_speed_calibration()
                self._improve_ema_alpha()
                self._improve_ocr_parameters()
                self._improve_detection_floor()
                self._improve_frame_timing()
                self._merge_session()
                snapshot = self._state.copy()
                self._reset_session_state()

            self._persist(snapshot)
            logger.info(
                f"Calibration improved: speedScale={snapshot.speed_scale_factor:.4f} "
                f"areaScale={snapshot.area_scale_factor:.3f} ema={snapshot.ema_alpha:.3f} "
                f"detFloor={snapshot.detection_confidence_floor:.2f} "
                f"delay={snapshot.frame_delay_ms}ms votes={snapshot.plate_vote_threshold}"
            )
            return True

        except Exception as e:
            logger.error(f"Improvement cycle failed: {e}", exc_info=True)
            return False
        finally:
            self._cycle_lock.release()

    def _improve_speed_calibration(self) -> None:
        if self._session_speed_samples < MIN_SPEED_SAMPLES:
            return

        s = self._state
        error_sum = s.speed_error_sum + self._session_speed_error_sum
        count = s.speed_sample_count + self._session_speed_samples
        mean_error = error_sum / count

        if abs(mean_error) <= 5.0:
            return

        # Learning rate decays as sessions accumulate
        rate = 0.01 / math.sqrt(max(1, s.total_sessions))
        delta = -rate if mean_error > 0 else rate
        s.speed_scale_factor = _clamp(s.speed_scale_factor + delta, *SPEED_SCALE_RANGE)
        s.area_scale_factor = _clamp(s.area_scale_factor + delta * 10, *AREA_SCALE_RANGE)
        logger.debug(f"Speed scale nudged by {delta:+.4f} (mean error {mean_error:+.1f} km/h)")

    def _improve_ema_alpha(self) -> None:
        if len(self._recent_errors) < MIN_VARIANCE_SAMPLES:
            return

        s = self._state
        s.variance_sum += float(np.var(list(self._recent_errors)))
        s.variance_samples += 1
        avg_variance = s.variance_sum / s.variance_samples

        # Noisy readings want more smoothing, stable ones more responsiveness
        if avg_variance > 100:
            s.ema_alpha = _clamp(s.ema_alpha - 0.005, *EMA_ALPHA_RANGE)
        elif avg_variance < 20:
            s.ema_alpha = _clamp(s.ema_alpha + 0.005, *EMA_ALPHA_RANGE)

    def _improve_ocr_parameters(self) -> None:
        s = self._state
        total = s.ocr_total_count + self._session_ocr_total
        if total < MIN_OCR_SAMPLES:
            return

        hit_rate = (s.ocr_success_count + self._session_ocr_success) / total

        if hit_rate < 0.15:
            s.ocr_crop_pad_x = _clamp(s.ocr_crop_pad_x + 0.01, *OCR_PAD_X_RANGE)
            s.ocr_crop_pad_bot = _clamp(s.ocr_crop_pad_bot + 0.01, *OCR_PAD_BOT_RANGE)
        elif hit_rate > 0.40:
            s.ocr_crop_pad_x = _clamp(s.ocr_crop_pad_x - 0.005, *OCR_PAD_X_RANGE)
            s.ocr_crop_pad_bot = _clamp(s.ocr_crop_pad_bot - 0.005, *OCR_PAD_BOT_RANGE)

        if hit_rate > 0.50:
            s.plate_vote_threshold = min(s.plate_vote_threshold + 1, PLATE_VOTE_RANGE[1])
        elif hit_rate < 0.10:
            s.plate_vote_threshold = max(s.plate_vote_threshold - 1, PLATE_VOTE_RANGE[0])

    def _improve_detection_floor(self) -> None:
        s = self._state
        flickers = s.detection_flicker_count + self._session_flickers
        total = flickers + s.detection_stable_count + self._session_stable
        if total < MIN_DETECTION_SAMPLES:
            return

        flicker_rate = flickers / total
        if flicker_rate > 0.40:
            s.detection_confidence_floor = _clamp(
                s.detection_confidence_floor + 0.02, *DETECTION_FLOOR_RANGE
            )
        elif flicker_rate < 0.15:
            s.detection_confidence_floor = _clamp(
                s.detection_confidence_floor - 0.01, *DETECTION_FLOOR_RANGE
            )

    def _improve_frame_timing(self) -> None:
        if len(self._frame_times) < MIN_TIMING_SAMPLES:
            return

        times = np.sort(np.asarray(self._frame_times, dtype=float))
        p90 = float(times[int(len(times) * 0.9)])
        target = _clamp(p90 + 100, *FRAME_DELAY_RANGE)

        s = self._state
        blended = round(s.frame_delay_ms * 0.7 + target * 0.3)
        s.frame_delay_ms = int(_clamp(blended, *FRAME_DELAY_RANGE))

    def _merge_session(self) -> None:
        s = self._state
        s.speed_error_sum += self._session_speed_error_sum
        s.speed_sample_count += self._session_speed_samples
        s.ocr_success_count += self._session_ocr_success
        s.ocr_total_count += self._session_ocr_total
        s.detection_flicker_count += self._session_flickers
        s.detection_stable_count += self._session_stable
        s.total_frames += self._session_frames
        s.total_sessions += 1
        s.last_improve_time = datetime.now(timezone.utc).isoformat()

    def _reset_session_state(self) -> None:
        self._session_speed_error_sum = 0.0
        self._session_speed_samples = 0
        self._recent_errors: deque[float] = deque(maxlen=SPEED_ERROR_WINDOW)
        self._session_ocr_success = 0
        self._session_ocr_total = 0
        self._session_flickers = 0
        self._session_stable = 0
        self._last_detection_count: int | None = None
        self._session_frames = 0
        self._frame_times: deque[float] = deque(maxlen=FRAME_TIMING_WINDOW)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def reset_to_defaults(self) -> None:
        """Restore factory tunables, zero every accumulator and persist."""
        with self._lock:
            self._state = CalibrationState()
            self._reset_session_state()
            snapshot = self._state.copy()
        logger.info("Calibration reset to defaults")
        self._persist(snapshot)

    def _persist(self, snapshot: CalibrationState) -> None:
        if self._store is None:
            return
        try:
            self._store.save(snapshot)
        except Exception as e:
            logger.error(f"Calibration persist failed: {e}", exc_info=True)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
