"""
Detection models for object detection results.

All coordinates are normalized to [0, 1] image space with the origin at the
top-left corner of the frame.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class BoundingBox:
    """
    A bounding box in normalized image coordinates.

    Attributes:
        x_min: Left edge.
        y_min: Top edge.
        x_max: Right edge.
        y_max: Bottom edge.
    """
    x_min: float
    y_min: float
    x_max: float
    y_max: float

    def __post_init__(self) -> None:
        if self.x_min > self.x_max or self.y_min > self.y_max:
            raise ValueError(
                f"Inverted bounding box: ({self.x_min}, {self.y_min}, {self.x_max}, {self.y_max})"
            )

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return as (x_min, y_min, x_max, y_max) tuple."""
        return (self.x_min, self.y_min, self.x_max, self.y_max)


@dataclass(frozen=True)
class Detection:
    """
    A single ranked detection produced by one inference cycle.

    Attributes:
        identifier: Human-readable label shown next to the marker.
        confidence: Class probability (0-1).
        bbox: Bounding box in normalized coordinates.
        class_id: Index of the winning class in the network output.
    """
    identifier: str
    confidence: float
    bbox: BoundingBox
    class_id: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence out of range [0, 1]: {self.confidence}")

    @property
    def x_min(self) -> float:
        return self.bbox.x_min

    @property
    def y_min(self) -> float:
        return self.bbox.y_min

    @property
    def x_max(self) -> float:
        return self.bbox.x_max

    @property
    def y_max(self) -> float:
        return self.bbox.y_max

    @property
    def label(self) -> str:
        """First comma-separated name of the identifier."""
        return self.identifier.split(",")[0].strip()

    @classmethod
    def from_xyxy(
        cls,
        x_min: float,
        y_min: float,
        x_max: float,
        y_max: float,
        confidence: float = 1.0,
        identifier: str = "",
        class_id: Optional[int] = None,
    ) -> "Detection":
        """Create Detection from x_min, y_min, x_max, y_max coordinates."""
        return cls(
            identifier=identifier,
            confidence=confidence,
            bbox=BoundingBox(x_min=x_min, y_min=y_min, x_max=x_max, y_max=y_max),
            class_id=class_id,
        )


@dataclass(frozen=True)
class RectangleObservation:
    """
    A quadrilateral found by rectangle recognition.

    Corners are normalized (x, y) points in clockwise order starting top-left.
    """
    top_left: Tuple[float, float]
    top_right: Tuple[float, float]
    bottom_right: Tuple[float, float]
    bottom_left: Tuple[float, float]
    confidence: float = 1.0

    @property
    def corners(self) -> List[Tuple[float, float]]:
        return [self.top_left, self.top_right, self.bottom_right, self.bottom_left]
