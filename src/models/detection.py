"""
Detection models produced by the decoder.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class BoundingBox:
    """
    A bounding box in original-frame pixel coordinates.

    Attributes:
        x1: Left edge x coordinate.
        y1: Top edge y coordinate.
        x2: Right edge x coordinate.
        y2: Bottom edge y coordinate.
    """
    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return as (x1, y1, x2, y2) tuple."""
        return (self.x1, self.y1, self.x2, self.y2)

    def as_xywh(self) -> Tuple[float, float, float, float]:
        """Return as (x, y, width, height) with (x, y) the top-left corner."""
        return (self.x1, self.y1, self.width, self.height)

    def as_int_tuple(self) -> Tuple[int, int, int, int]:
        """Return as integer (x1, y1, x2, y2) tuple."""
        x1, y1, x2, y2 = self.as_tuple()
        return (int(x1), int(y1), int(x2), int(y2))


@dataclass(frozen=True)
class Detection:
    """
    A single decoded detection.

    Attributes:
        class_id: Index of the winning class.
        confidence: Score of the winning class (0-1).
        box: Bounding box in original-frame pixel coordinates.
        class_name: Optional human-readable label.
    """
    class_id: int
    confidence: float
    box: BoundingBox
    class_name: Optional[str] = None

    @property
    def xywh(self) -> Tuple[float, float, float, float]:
        return self.box.as_xywh()

    @property
    def label(self) -> str:
        return self.class_name if self.class_name is not None else str(self.class_id)

    @classmethod
    def from_xyxy(
        cls,
        x1: float,
        y1: float,
        x2: float,
        y2: float,
        confidence: float,
        class_id: int,
        class_name: Optional[str] = None,
    ) -> "Detection":
        return cls(
            class_id=class_id,
            confidence=confidence,
            box=BoundingBox(x1=x1, y1=y1, x2=x2, y2=y2),
            class_name=class_name,
        )

    def to_dict(self) -> dict:
        x, y, w, h = self.xywh
        return {
            "class_id": self.class_id,
            "class_name": self.class_name,
            "confidence": round(self.confidence, 4),
            "box": [round(x, 1), round(y, 1), round(w, 1), round(h, 1)],
        }


@dataclass(frozen=True)
class RenderInstruction:
    """What the rendering collaborator draws for one cycle."""
    detections: Tuple[Detection, ...]
    canvas_width: int
    canvas_height: int

    @property
    def canvas_size(self) -> Tuple[int, int]:
        return (self.canvas_width, self.canvas_height)


