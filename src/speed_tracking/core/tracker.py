"""
Object Tracker - persistent identities for per-frame detections.

Associates detections across consecutive frames using IoU matching with
a centroid-distance fallback for fast movers. One track may be locked
as the measurement subject; it is matched first with a combined score,
gets jitter smoothing and survives longer without detections.
"""

import logging
import time
from collections.abc import Callable, Iterable

from ..models import Detection, TrackedObject
from ..utils.constants import (
    CENTROID_DIST_THRESHOLD,
    IOU_THRESHOLD,
    LOCKED_BBOX_SMOOTHING,
    LOCKED_CENTROID_DIST_THRESHOLD,
    LOCKED_MATCH_MIN_SCORE,
    LOCKED_STALE_THRESHOLD_MS,
    MAX_TRACKS,
    STALE_THRESHOLD_MS,
)
from .geometry import area_similarity, centroid_distance, iou, smooth_box

logger = logging.getLogger(__name__)


class ObjectTracker:
    """
    Maintains the set of active tracked objects.

    Not thread-safe: callers serialize update_tracks() calls (the
    session holds a lock around each frame).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._active_tracks: dict[str, TrackedObject] = {}
        self._locked_id: str | None = None
        self._generation = 1
        self._next_seq = 1

    @property
    def active_tracks(self) -> list[TrackedObject]:
        """All currently tracked objects."""
        return list(self._active_tracks.values())

    @property
    def active_ids(self) -> set[str]:
        return set(self._active_tracks)

    @property
    def locked_target(self) -> TrackedObject | None:
        if self._locked_id is None:
            return None
        return self._active_tracks.get(self._locked_id)

    @property
    def has_locked_target(self) -> bool:
        return self._locked_id is not None and self._locked_id in self._active_tracks

    def get_track(self, tracking_id: str) -> TrackedObject | None:
        return self._active_tracks.get(tracking_id)

    def update_tracks(
        self, detections: Iterable[Detection] | None, now: float | None = None
    ) -> list[TrackedObject]:
        """
        Fold one frame of detections into the track set.

        Args:
            detections: Detections for the current frame (may be empty)
            now: Clock time in seconds (defaults to the tracker clock)

        Returns:
            Current active tracks, possibly unchanged on bad input
        """
        try:
            now = self._clock() if now is None else now
            candidates = _usable_detections(detections)

            self._remove_stale(now)

            matched: set[int] = set()
            updated: dict[str, TrackedObject] = {}

            locked = self.locked_target
            if locked is not None:
                updated[locked.tracking_id] = self._match_locked(
                    locked, candidates, matched, now
                )

            for tracking_id, track in self._active_tracks.items():
                if tracking_id == self._locked_id:
                    continue
                updated[tracking_id] = self._match_track(track, candidates, matched, now)

            for i, detection in enumerate(candidates):
                if i in matched:
                    continue
                if len(updated) >= MAX_TRACKS:
                    logger.debug(
                        f"Track cap reached ({MAX_TRACKS}), dropping "
                        f"{len(candidates) - len(matched)} unmatched detection(s)"
                    )
                    break
                track = self._new_track(detection, now)
                updated[track.tracking_id] = track

            self._active_tracks = updated

        except Exception as e:
            logger.error(f"Track update failed: {e}", exc_info=True)

        return self.active_tracks

    def _match_locked(
        self,
        track: TrackedObject,
        candidates: list[Detection],
        matched: set[int],
        now: float,
    ) -> TrackedObject:
        """Re-acquire the locked target with a combined score."""
        best_idx = None
        best_score = 0.0
        old_box = track.detection.bounding_box

        for i, detection in enumerate(candidates):
            if i in matched:
                continue
            box = detection.bounding_box

            score = iou(old_box, box) * 2.0
            if track.detection.class_name == detection.class_name:
                score += 0.3
            score += area_similarity(old_box, box) * 0.3

            dist = centroid_distance(old_box, box)
            if dist < LOCKED_CENTROID_DIST_THRESHOLD:
                score += (1.0 - dist / LOCKED_CENTROID_DIST_THRESHOLD) * 0.4

            if score > best_score:
                best_score = score
                best_idx = i

        if best_idx is None or best_score <= LOCKED_MATCH_MIN_SCORE:
            # Keep alive with the frozen box until it goes stale
            return track

        matched.add(best_idx)
        detection = candidates[best_idx]
        smoothed = smooth_box(old_box, detection.bounding_box, LOCKED_BBOX_SMOOTHING)
        return track.with_changes(
            detection=detection.with_changes(
                tracking_id=track.tracking_id, bounding_box=smoothed
            ),
            frame_count=track.frame_count + 1,
            last_seen=now,
        )

    def _match_track(
        self,
        track: TrackedObject,
        candidates: list[Detection],
        matched: set[int],
        now: float,
    ) -> TrackedObject:
        """Best-IoU match, falling back to same-class centroid distance."""
        old_box = track.detection.bounding_box
        best_idx = None
        best_iou = IOU_THRESHOLD

        for i, detection in enumerate(candidates):
            if i in matched:
                continue
            overlap = iou(old_box, detection.bounding_box)
            if overlap > best_iou:
                best_iou = overlap
                best_idx = i

        # Fast movers barely overlap between frames
        if best_idx is None:
            best_dist = CENTROID_DIST_THRESHOLD
            for i, detection in enumerate(candidates):
                if i in matched or detection.class_name != track.detection.class_name:
                    continue
                dist = centroid_distance(old_box, detection.bounding_box)
                if dist < best_dist:
                    best_dist = dist
                    best_idx = i

        if best_idx is None:
            return track

        matched.add(best_idx)
        return track.with_changes(
            detection=candidates[best_idx].with_changes(tracking_id=track.tracking_id),
            frame_count=track.frame_count + 1,
            last_seen=now,
        )

    def _new_track(self, detection: Detection, now: float) -> TrackedObject:
        tracking_id = f"g{self._generation}-{self._next_seq:06d}"
        self._next_seq += 1
        return TrackedObject(
            tracking_id=tracking_id,
            detection=detection.with_changes(tracking_id=tracking_id),
            estimated_speed=0.0,
            frame_count=1,
            first_seen=now,
            last_seen=now,
        )

    def _remove_stale(self, now: float) -> None:
        """Drop tracks unmatched for too long (locked target gets longer)."""
        for tracking_id, track in list(self._active_tracks.items()):
            limit = (
                LOCKED_STALE_THRESHOLD_MS
                if tracking_id == self._locked_id
                else STALE_THRESHOLD_MS
            )
            if track.age_ms(now) > limit:
                del self._active_tracks[tracking_id]
                if tracking_id == self._locked_id:
                    logger.info(f"Locked target {tracking_id} lost (stale)")
                    self._locked_id = None

    def lock_target(self, tracking_id: str) -> bool:
        """
        Pin a track as the measurement subject.

        Returns:
            True if the track exists and is now locked
        """
        if tracking_id not in self._active_tracks:
            logger.debug(f"Cannot lock unknown track {tracking_id}")
            return False

        if self._locked_id is not None and self._locked_id in self._active_tracks:
            previous = self._active_tracks[self._locked_id]
            self._active_tracks[self._locked_id] = previous.with_changes(is_locked=False)

        self._locked_id = tracking_id
        self._active_tracks[tracking_id] = self._active_tracks[tracking_id].with_changes(
            is_locked=True
        )
        logger.info(f"Locked onto target: {tracking_id}")
        return True

    def lock_primary_target(self) -> bool:
        """Lock the track with the largest area x confidence."""
        primary = None
        best_score = 0.0
        for track in self._active_tracks.values():
            score = track.detection.area * track.detection.confidence
            if score > best_score:
                best_score = score
                primary = track

        if primary is None:
            return False
        return self.lock_target(primary.tracking_id)

    def unlock_target(self) -> None:
        if self._locked_id is not None and self._locked_id in self._active_tracks:
            track = self._active_tracks[self._locked_id]
            self._active_tracks[self._locked_id] = track.with_changes(is_locked=False)
        self._locked_id = None
        logger.info("Target unlocked")

    def update_speed(self, tracking_id: str, speed_kmh: float) -> None:
        """Record the latest smoothed speed on a track."""
        track = self._active_tracks.get(tracking_id)
        if track is not None:
            self._active_tracks[tracking_id] = track.with_changes(
                estimated_speed=speed_kmh
            )

    def reset(self) -> None:
        """Drop all tracks and the lock; later ids start a new generation."""
        self._active_tracks.clear()
        self._locked_id = None
        self._generation += 1
        self._next_seq = 1


def _usable_detections(detections) -> list[Detection]:
    """Keep well-formed detections, skipping anything else."""
    if not detections:
        return []

    usable = []
    for detection in detections:
        if not isinstance(detection, Detection):
            logger.debug(f"Ignoring non-detection input: {detection!r}")
            continue
        if detection.bounding_box.is_degenerate():
            logger.debug(f"Ignoring degenerate box: {detection.bounding_box}")
            continue
        usable.append(detection)
    return usable
