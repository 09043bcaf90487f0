"""
Recorded session replay.

A recording is a JSON-lines file, one object per frame:

    {"timestamp": 12.3, "frame_width": 1280, "frame_height": 720,
     "ground_speed_kmh": 42.0,
     "detections": [{"classId": 2, "className": "car", "confidence": 0.8,
                     "boundingBox": {"left": 100, "top": 100,
                                     "right": 200, "bottom": 160}}],
     "plate": {"text": "AB12CDE", "correct": true}}

"plate" is optional. Malformed lines are logged and skipped.
"""

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .models import Detection, DetectionFrame

logger = logging.getLogger(__name__)


@dataclass
class RecordedFrame(DetectionFrame):
    """One recorded frame with the ground speed captured alongside it."""

    ground_speed_kmh: float = 0.0
    plate_text: str | None = None
    plate_correct: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecordedFrame":
        plate = data.get("plate") or {}
        timestamp = data.get("timestamp")
        return cls(
            detections=[Detection.from_dict(d) for d in data.get("detections", [])],
            frame_width=int(data.get("frame_width", 0)),
            frame_height=int(data.get("frame_height", 0)),
            timestamp=float(timestamp) if timestamp is not None else None,
            ground_speed_kmh=float(data.get("ground_speed_kmh", 0.0)),
            plate_text=plate.get("text"),
            plate_correct=plate.get("correct"),
        )


def iter_recording(path: str | Path) -> Iterator[RecordedFrame]:
    """
    Yield frames from a recording file.

    Raises:
        FileNotFoundError: If the recording does not exist
    """
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise ValueError("frame record is not an object")
                yield RecordedFrame.from_dict(data)
            except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"{path}:{line_no}: skipping malformed frame ({e})")


class ReplaySource:
    """FrameSource backed by a recording; also reports the recorded ground speed."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._frames = iter_recording(self.path)
        self.current: RecordedFrame | None = None

    def next_frame(self) -> RecordedFrame | None:
        self.current = next(self._frames, None)
        return self.current

    def ground_speed(self) -> float:
        return self.current.ground_speed_kmh if self.current is not None else 0.0

    def close(self) -> None:
        """Release the recording file, even if replay stopped early."""
        self._frames.close()
