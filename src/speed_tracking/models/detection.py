"""
Detection data models - bounding boxes and per-frame detections.
"""

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in pixel coordinates."""

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center_x(self) -> float:
        return (self.left + self.right) / 2

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) / 2

    @property
    def area(self) -> float:
        return self.width * self.height

    def is_degenerate(self) -> bool:
        """True if the box has no positive area."""
        return self.width <= 0 or self.height <= 0

    def to_dict(self) -> dict[str, float]:
        return {
            "left": self.left,
            "top": self.top,
            "right": self.right,
            "bottom": self.bottom,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BoundingBox":
        """Build from a mapping, defaulting missing edges to a 100px box."""
        return cls(
            left=float(data.get("left", 0)),
            top=float(data.get("top", 0)),
            right=float(data.get("right", 100)),
            bottom=float(data.get("bottom", 100)),
        )


@dataclass(frozen=True)
class Detection:
    """
    A single object observed in one frame.

    Attributes:
        class_id: Detector class ID
        class_name: Detector class name (must be stable across frames)
        confidence: Detector confidence in [0, 1]
        bounding_box: Box in pixel space of the source frame
        is_fallback: True for placeholder detections from a degraded detector
        tracking_id: Set by the tracker once the detection joins a track
    """

    class_id: int
    class_name: str
    confidence: float
    bounding_box: BoundingBox
    is_fallback: bool = False
    tracking_id: str | None = None

    @property
    def width(self) -> float:
        return self.bounding_box.width

    @property
    def height(self) -> float:
        return self.bounding_box.height

    @property
    def center_x(self) -> float:
        return self.bounding_box.center_x

    @property
    def center_y(self) -> float:
        return self.bounding_box.center_y

    @property
    def area(self) -> float:
        return self.bounding_box.area

    def with_changes(self, **changes: Any) -> "Detection":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "classId": self.class_id,
            "className": self.class_name,
            "confidence": self.confidence,
            "boundingBox": self.bounding_box.to_dict(),
            "isFallback": self.is_fallback,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Detection":
        """Parse a detection-source record (camelCase keys, all optional)."""
        return cls(
            class_id=int(data.get("classId", 0)),
            class_name=str(data.get("className", "vehicle")),
            confidence=float(data.get("confidence", 0.0)),
            bounding_box=BoundingBox.from_dict(data.get("boundingBox") or {}),
            is_fallback=bool(data.get("isFallback", False)),
        )


@dataclass
class DetectionFrame:
    """Detections for one frame together with the frame dimensions."""

    detections: list[Detection] = field(default_factory=list)
    frame_width: int = 0
    frame_height: int = 0
    timestamp: float | None = None  # Seconds; None means "use the live clock"


def detections_from_yolo(boxes, names: dict[int, str]) -> list[Detection]:
    """
    Convert ultralytics-style Boxes into Detections.

    Only reads the xyxy/conf/cls arrays already produced by the detector;
    no inference happens here.

    Args:
        boxes: Result boxes exposing xyxy, conf and cls tensors or arrays
        names: Mapping of class ID -> class name from the model

    Returns:
        List of Detection objects (empty if boxes is None or empty)
    """
    if boxes is None or len(boxes) == 0:
        return []

    xyxy = _to_list(boxes.xyxy)
    confs = _to_list(boxes.conf)
    classes = _to_list(boxes.cls)

    detections = []
    for box, conf, cls in zip(xyxy, confs, classes):
        x1, y1, x2, y2 = (float(v) for v in box)
        class_id = int(cls)
        detections.append(
            Detection(
                class_id=class_id,
                class_name=names.get(class_id, "vehicle"),
                confidence=float(conf),
                bounding_box=BoundingBox(x1, y1, x2, y2),
            )
        )
    return detections


def _to_list(values) -> list:
    """Move a tensor to host memory if needed and return a nested list."""
    if hasattr(values, "cpu"):
        values = values.cpu()
    if hasattr(values, "numpy"):
        values = values.numpy()
    if hasattr(values, "tolist"):
        return values.tolist()
    return list(values)
