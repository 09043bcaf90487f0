"""
Tracking Session - folds frames through tracker, calculator and calibration.

One session owns one tracker and one speed calculator. Each frame's
detections go through the tracker, every active track through the
calculator, and the observations into the calibration engine. An
improvement cycle runs in the background every N frames and once more
when the session stops.

run() drives a self-pacing loop: capture, process, then wait the learned
frame delay before the next capture, so slow hardware never builds a
backlog.
"""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Protocol

from .calibration import CalibrationEngine
from .core import ObjectTracker, SpeedCalculator
from .models import Detection, DetectionFrame, SpeedResult, TrackedObject
from .utils.constants import (
    DETECTION_TIMEOUT_SECONDS,
    IMPROVE_INTERVAL_FRAMES,
    STATUS_REPORT_INTERVAL,
)

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    """Supplies one frame of detections per call; None when exhausted."""

    def next_frame(self) -> DetectionFrame | None: ...


@dataclass
class FrameResult:
    """Outcome of processing one frame."""

    frame_number: int
    tracks: list[TrackedObject] = field(default_factory=list)
    speeds: dict[str, SpeedResult] = field(default_factory=dict)
    subject: TrackedObject | None = None

    @property
    def subject_speed(self) -> SpeedResult | None:
        if self.subject is None:
            return None
        return self.speeds.get(self.subject.tracking_id)


@dataclass
class SessionStats:
    """Summary of a finished session."""

    frames: int = 0
    readings: int = 0
    max_speed_kmh: float = 0.0
    speed_sum_kmh: float = 0.0

    @property
    def avg_speed_kmh(self) -> float:
        return self.speed_sum_kmh / self.readings if self.readings else 0.0

    def add_reading(self, speed_kmh: float) -> None:
        self.readings += 1
        self.speed_sum_kmh += speed_kmh
        self.max_speed_kmh = max(self.max_speed_kmh, speed_kmh)


class PlateVoter:
    """Tallies plate reads until one text collects enough votes."""

    def __init__(self):
        self.votes: dict[str, int] = {}

    def add(self, text: str, threshold: int) -> str | None:
        """Record a read; return the leading text once it reaches threshold."""
        self.votes[text] = self.votes.get(text, 0) + 1
        best_text = max(self.votes, key=self.votes.get)
        if self.votes[best_text] >= threshold:
            return best_text
        return None

    def clear(self) -> None:
        self.votes.clear()


class TrackingSession:
    """
    Orchestrates one live measurement session.

    Args:
        calibration: Calibration engine (in-memory defaults if None)
        tracker: Object tracker (created if None)
        calculator: Speed calculator (created on the engine if None)
        improve_interval: Frames between background improvement cycles
    """

    def __init__(
        self,
        calibration: CalibrationEngine | None = None,
        tracker: ObjectTracker | None = None,
        calculator: SpeedCalculator | None = None,
        improve_interval: int = IMPROVE_INTERVAL_FRAMES,
    ):
        self.calibration = calibration if calibration is not None else CalibrationEngine()
        self.tracker = tracker if tracker is not None else ObjectTracker()
        self.calculator = (
            calculator if calculator is not None else SpeedCalculator(self.calibration)
        )
        self.improve_interval = improve_interval

        self.stats = SessionStats()
        self.plates = PlateVoter()
        self._frame_lock = threading.Lock()
        self._improve_thread: threading.Thread | None = None
        self._frames_since_improve = 0

    def process_frame(
        self,
        detections: list[Detection],
        frame_width: int,
        frame_height: int,
        ground_speed_kmh: float,
        now: float | None = None,
        capture_ms: float = 0.0,
    ) -> FrameResult:
        """
        Run one frame through the tracking pipeline.

        Args:
            detections: Raw detections for the frame
            frame_width: Frame width in pixels
            frame_height: Frame height in pixels
            ground_speed_kmh: Latest observer ground speed
            now: Clock time in seconds (defaults to the components' clocks)
            capture_ms: Time already spent capturing/detecting this frame

        Returns:
            FrameResult with tracks, per-track speeds and the reading subject
        """
        started = time.perf_counter()

        floor = self.calibration.detection_confidence_floor
        kept = [
            d
            for d in detections or []
            if isinstance(d, Detection) and (d.is_fallback or d.confidence >= floor)
        ]
        self.calibration.feed_detection_stability(len(kept))

        with self._frame_lock:
            self.stats.frames += 1
            result = FrameResult(frame_number=self.stats.frames)

            tracks = self.tracker.update_tracks(kept, now=now)
            for track in tracks:
                speed = self.calculator.calculate_speed(
                    track.tracking_id,
                    track.detection,
                    frame_width,
                    frame_height,
                    ground_speed_kmh,
                    now=now,
                )
                result.speeds[track.tracking_id] = speed
                self.tracker.update_speed(track.tracking_id, speed.target_speed_kmh)
                self.calibration.feed_speed_observation(
                    speed.relative_speed_kmh, ground_speed_kmh, speed.target_speed_kmh
                )

            self.calculator.prune_history(self.tracker.active_ids)
            result.tracks = self.tracker.active_tracks
            result.subject = self._reading_subject(result.tracks)

            subject_speed = result.subject_speed
            if subject_speed is not None:
                self.stats.add_reading(subject_speed.target_speed_kmh)

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        self.calibration.feed_frame_timing(capture_ms + elapsed_ms)

        self._frames_since_improve += 1
        if self._frames_since_improve >= self.improve_interval:
            self._frames_since_improve = 0
            self._start_improvement()

        return result

    def _reading_subject(self, tracks: list[TrackedObject]) -> TrackedObject | None:
        """The locked target, else the largest box."""
        locked = self.tracker.locked_target
        if locked is not None:
            return locked
        if not tracks:
            return None
        return max(tracks, key=lambda t: t.detection.area)

    def _start_improvement(self) -> None:
        if self._improve_thread is not None and self._improve_thread.is_alive():
            logger.debug("Previous improvement cycle still running")
            return
        self._improve_thread = threading.Thread(
            target=self.calibration.improve_and_persist,
            name="CalibrationCycle",
            daemon=True,
        )
        self._improve_thread.start()

    def lock_target(self, tracking_id: str | None = None) -> bool:
        """Lock a specific track, or the primary one when no ID is given."""
        with self._frame_lock:
            if tracking_id is None:
                return self.tracker.lock_primary_target()
            return self.tracker.lock_target(tracking_id)

    def unlock_target(self) -> None:
        with self._frame_lock:
            self.tracker.unlock_target()
        self.plates.clear()

    def submit_plate(self, text: str | None) -> str | None:
        """
        Feed one plate-recognition attempt.

        Args:
            text: Recognized text, or None/empty for a failed read

        Returns:
            The winning plate text once it has enough votes, else None
        """
        if not text:
            self.calibration.feed_ocr_result(success=False)
            return None
        self.calibration.feed_ocr_result(success=True)
        return self.plates.add(text, self.calibration.plate_vote_threshold)

    def confirm_plate(self, was_correct: bool) -> None:
        """Report whether the user confirmed the voted plate unchanged."""
        self.calibration.feed_plate_correction(was_correct)
        self.plates.clear()

    def run(
        self,
        source: FrameSource,
        ground_speed: Callable[[], float],
        shutdown_event: threading.Event | None = None,
        detection_timeout: float = DETECTION_TIMEOUT_SECONDS,
        pace: bool = True,
        on_frame: Callable[[FrameResult], None] | None = None,
    ) -> SessionStats:
        """
        Self-pacing processing loop.

        Args:
            source: Frame source (capture + detection)
            ground_speed: Returns the current observer ground speed in km/h
            shutdown_event: Set to stop after the current frame
            detection_timeout: Seconds to wait for one frame's detections
            pace: Wait the learned frame delay between frames
            on_frame: Optional callback for every processed frame

        Returns:
            SessionStats from stop()
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="detect")
        start_time = time.time()
        logger.info("Tracking started")

        try:
            while True:
                if shutdown_event is not None and shutdown_event.is_set():
                    logger.info("Shutdown signal received")
                    break

                capture_start = time.perf_counter()
                try:
                    frame = executor.submit(source.next_frame).result(
                        timeout=detection_timeout
                    )
                except FuturesTimeout:
                    logger.warning(f"Detection exceeded {detection_timeout}s, skipping frame")
                    self._pause(shutdown_event, pace)
                    continue
                except Exception as e:
                    logger.warning(f"Frame capture failed (non-fatal): {e}")
                    self._pause(shutdown_event, pace)
                    continue

                if frame is None:
                    logger.info("Frame source exhausted")
                    break

                capture_ms = (time.perf_counter() - capture_start) * 1000.0
                try:
                    result = self.process_frame(
                        frame.detections,
                        frame.frame_width,
                        frame.frame_height,
                        ground_speed(),
                        now=frame.timestamp,
                        capture_ms=capture_ms,
                    )
                    if on_frame is not None:
                        on_frame(result)
                except Exception as e:
                    logger.error(f"Frame processing failed (non-fatal): {e}", exc_info=True)
                    self._pause(shutdown_event, pace)
                    continue

                if result.frame_number % STATUS_REPORT_INTERVAL == 0:
                    _log_status(result, start_time, self.calibration.frame_delay_ms)

                self._pause(shutdown_event, pace)

        except KeyboardInterrupt:
            logger.info("Tracking stopped by user")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            stats = self.stop()

        return stats

    def _pause(self, shutdown_event: threading.Event | None, pace: bool) -> None:
        """Sleep the learned frame delay, re-read every iteration."""
        if not pace:
            return
        delay = self.calibration.frame_delay_ms / 1000.0
        if shutdown_event is not None:
            shutdown_event.wait(delay)
        else:
            time.sleep(delay)

    def stop(self) -> SessionStats:
        """
        End the session.

        Runs a final improvement cycle, then clears tracker and calculator
        state. Learned calibration parameters are kept.
        """
        if self._improve_thread is not None:
            self._improve_thread.join()
            self._improve_thread = None

        self.calibration.improve_and_persist()

        with self._frame_lock:
            self.tracker.reset()
            self.calculator.reset()
        self.plates.clear()
        self._frames_since_improve = 0

        stats = self.stats
        self.stats = SessionStats()
        logger.info(
            f"Session complete: {stats.frames} frames, "
            f"avg {stats.avg_speed_kmh:.1f} km/h, max {stats.max_speed_kmh:.1f} km/h"
        )
        return stats


def _log_status(result: FrameResult, start_time: float, frame_delay_ms: int) -> None:
    """Log periodic status."""
    elapsed = time.time() - start_time
    subject = result.subject_speed
    reading = f"{subject.target_speed_kmh:.1f} km/h" if subject else "-"
    logger.info(
        f"[{elapsed / 60:.1f}min] Frame {result.frame_number} | "
        f"Tracks: {len(result.tracks)} | Subject: {reading} | Delay: {frame_delay_ms}ms"
    )
