"""
Desktop render host that draws markers onto OpenCV frames.

Marker geometry arrives in the camera-attached plane convention used by
SlotManager; `draw` projects it back into pixel space. The root transform
is recorded but not used for drawing since the desktop camera does not move.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

import cv2
import numpy as np

from models.detection import RectangleObservation

# Colors (BGR)
COLOR_MARKER = (0, 255, 0)
COLOR_RECTANGLE = (255, 201, 0)
COLOR_TEXT = (255, 255, 255)


@dataclass
class OpenCvMarker:
    """Marker state recorded by the OpenCV host."""
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    width: float = 0.0
    height: float = 0.0
    label_position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    text: str = ""
    visible: bool = True
    root_position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    root_rotation: np.ndarray = field(default_factory=lambda: np.eye(3))

    def set_geometry(self, position: np.ndarray, width: float, height: float) -> None:
        self.position = np.asarray(position, dtype=float)
        self.width = float(width)
        self.height = float(height)

    def set_label(self, position: np.ndarray, text: str) -> None:
        self.label_position = np.asarray(position, dtype=float)
        self.text = text

    def set_visible(self, visible: bool) -> None:
        self.visible = visible

    def set_transform(self, position: np.ndarray, rotation: np.ndarray) -> None:
        self.root_position = np.asarray(position, dtype=float)
        self.root_rotation = np.asarray(rotation, dtype=float)


class OpenCvRenderHost:
    """
    Creates OpenCvMarker entities and draws the visible ones.

    Example:
        host = OpenCvRenderHost(display_depth=1.0, plane_size=10.0)
        slots = SlotManager(host)
        ...
        annotated = host.draw(frame.copy())
    """

    def __init__(self, display_depth: float = 1.0, plane_size: float = 10.0):
        self.display_depth = display_depth
        self.plane_size = plane_size
        self.markers: List[OpenCvMarker] = []
        self.rectangles: List[RectangleObservation] = []

    def create_marker(self) -> OpenCvMarker:
        marker = OpenCvMarker()
        self.markers.append(marker)
        return marker

    def set_rectangles(self, rectangles: List[RectangleObservation]) -> None:
        self.rectangles = list(rectangles)

    def marker_rect(self, marker: OpenCvMarker, frame_w: int, frame_h: int) -> Tuple[int, int, int, int]:
        """Pixel (x1, y1, x2, y2) of a marker on a frame of the given size."""
        depth = self.display_depth
        cx = (marker.position[0] / depth + 0.5) * frame_w
        cy = (-marker.position[1] / depth + 0.5) * frame_h
        w = marker.width * self.plane_size / depth * frame_w
        h = marker.height * self.plane_size / depth * frame_h
        return (
            int(round(cx - w / 2)),
            int(round(cy - h / 2)),
            int(round(cx + w / 2)),
            int(round(cy + h / 2)),
        )

    def draw(self, frame: np.ndarray) -> np.ndarray:
        """Draw visible markers and rectangle outlines on the frame."""
        frame_h, frame_w = frame.shape[:2]

        for rect in self.rectangles:
            pts = np.array(
                [(int(x * frame_w), int(y * frame_h)) for x, y in rect.corners],
                dtype=np.int32,
            )
            cv2.polylines(frame, [pts], True, COLOR_RECTANGLE, 2)

        for marker in self.markers:
            if not marker.visible:
                continue
            x1, y1, x2, y2 = self.marker_rect(marker, frame_w, frame_h)
            cv2.rectangle(frame, (x1, y1), (x2, y2), COLOR_MARKER, 2)

            if marker.text:
                # Label with background
                font = cv2.FONT_HERSHEY_SIMPLEX
                (tw, th), _ = cv2.getTextSize(marker.text, font, 0.5, 1)
                cv2.rectangle(frame, (x1, y1 - th - 6), (x1 + tw + 4, y1), COLOR_MARKER, -1)
                cv2.putText(frame, marker.text, (x1 + 2, y1 - 4), font, 0.5, COLOR_TEXT, 1)

        return frame
