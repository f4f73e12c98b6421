"""
Detection models for results returned by a detection capability.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class BoundingBox:
    """
    A bounding box in pixel coordinates of the image it was detected on.

    Attributes:
        x: Left edge x coordinate.
        y: Top edge y coordinate.
        width: Box width.
        height: Box height.
    """
    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def area(self) -> float:
        return self.width * self.height

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return as (x, y, w, h) tuple."""
        return (self.x, self.y, self.width, self.height)

    def as_int_xyxy(self) -> Tuple[int, int, int, int]:
        """Return as integer (x1, y1, x2, y2) tuple for drawing."""
        return (int(round(self.x)), int(round(self.y)), int(round(self.x2)), int(round(self.y2)))

    def scaled(self, sx: float, sy: float) -> "BoundingBox":
        """Return the box rescaled by independent x/y factors."""
        return BoundingBox(x=self.x * sx, y=self.y * sy, width=self.width * sx, height=self.height * sy)

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        """Create from corner coordinates."""
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)


@dataclass(frozen=True)
class DetectionResult:
    """
    A single detection from a detection capability.

    Attributes:
        label: Class label (e.g. "person", "face").
        confidence: Score in [0, 1].
        box: Bounding box in source-image pixel space.
    """
    label: str
    confidence: float
    box: BoundingBox

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    def scaled(self, sx: float, sy: float) -> "DetectionResult":
        """Return a copy with the box rescaled into another coordinate space."""
        return DetectionResult(label=self.label, confidence=self.confidence, box=self.box.scaled(sx, sy))

    @classmethod
    def from_xyxy(cls, label: str, confidence: float, x1: float, y1: float, x2: float, y2: float) -> "DetectionResult":
        # Model scores can drift a hair outside [0, 1] after float conversion.
        conf = min(1.0, max(0.0, float(confidence)))
        return cls(label=label, confidence=conf, box=BoundingBox.from_xyxy(x1, y1, x2, y2))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "label": self.label,
            "confidence": self.confidence,
            "box": list(self.box.as_tuple()),
        }


def count_matching(results: List[DetectionResult], labels: List[str]) -> int:
    """Count results whose label is in `labels` (all results if `labels` is empty)."""
    if not labels:
        return len(results)
    wanted = {label.lower() for label in labels}
    return sum(1 for r in results if r.label.lower() in wanted)
