"""
Rectangle recognition using OpenCV contour analysis.

Finds convex quadrilaterals whose corner angles are within a tolerance of
90 degrees and returns them largest-first as normalized corner points.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

import cv2
import numpy as np

from models.detection import RectangleObservation


class RectangleDetector:
    """Detect rectangles in a frame using edge detection and polygon approximation."""

    def __init__(
        self,
        max_observations: int = 10,
        quadrature_tolerance: float = 15.0,
        min_area_ratio: float = 0.01,
        canny_low: int = 50,
        canny_high: int = 150,
    ) -> None:
        """
        Initialize the rectangle detector.

        Args:
            max_observations: Maximum rectangles returned per frame
            quadrature_tolerance: Allowed deviation from 90 degrees per corner
            min_area_ratio: Minimum quad area as a fraction of the frame area
            canny_low: Lower Canny hysteresis threshold
            canny_high: Upper Canny hysteresis threshold
        """
        self.max_observations = max_observations
        self.quadrature_tolerance = quadrature_tolerance
        self.min_area_ratio = min_area_ratio
        self.canny_low = canny_low
        self.canny_high = canny_high

        # Kernel for closing gaps in edges
        self.kernel = np.ones((3, 3), np.uint8)

        logging.info("Rectangle detector initialized")

    def detect(self, image: np.ndarray) -> List[RectangleObservation]:
        frame_height, frame_width = image.shape[:2]
        if image.ndim == 3 and image.shape[2] > 1:
            gray = cv2.cvtColor(image[:, :, :3], cv2.COLOR_BGR2GRAY)
        else:
            gray = image.reshape(frame_height, frame_width)

        blurred = cv2.GaussianBlur(gray, (5, 5), 0)
        edges = cv2.Canny(blurred, self.canny_low, self.canny_high)
        edges = cv2.morphologyEx(edges, cv2.MORPH_CLOSE, self.kernel)

        contours, _ = cv2.findContours(edges, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)

        min_area = self.min_area_ratio * frame_width * frame_height
        quads: List[Tuple[float, np.ndarray]] = []

        for contour in contours:
            perimeter = cv2.arcLength(contour, True)
            approx = cv2.approxPolyDP(contour, 0.02 * perimeter, True)

            # Only convex four-sided polygons
            if len(approx) != 4 or not cv2.isContourConvex(approx):
                continue

            area = cv2.contourArea(approx)
            if area < min_area:
                continue

            points = approx.reshape(4, 2).astype(float)
            if not self._is_rectangular(points):
                continue

            if any(self._same_quad(points, area, other, other_area) for other_area, other in quads):
                continue

            quads.append((area, points))

        quads.sort(key=lambda q: q[0], reverse=True)

        observations = []
        for _, points in quads[:self.max_observations]:
            tl, tr, br, bl = self._order_corners(points)
            observations.append(
                RectangleObservation(
                    top_left=(tl[0] / frame_width, tl[1] / frame_height),
                    top_right=(tr[0] / frame_width, tr[1] / frame_height),
                    bottom_right=(br[0] / frame_width, br[1] / frame_height),
                    bottom_left=(bl[0] / frame_width, bl[1] / frame_height),
                )
            )
        return observations

    def _is_rectangular(self, points: np.ndarray) -> bool:
        """Check every corner angle is within tolerance of 90 degrees."""
        for i in range(4):
            prev_pt = points[i - 1]
            pt = points[i]
            next_pt = points[(i + 1) % 4]
            v1 = prev_pt - pt
            v2 = next_pt - pt
            norm = np.linalg.norm(v1) * np.linalg.norm(v2)
            if norm == 0:
                return False
            cos_angle = np.clip(np.dot(v1, v2) / norm, -1.0, 1.0)
            angle = np.degrees(np.arccos(cos_angle))
            if abs(angle - 90.0) > self.quadrature_tolerance:
                return False
        return True

    def _same_quad(
        self, a: np.ndarray, area_a: float, b: np.ndarray, area_b: float, distance: float = 5.0
    ) -> bool:
        """Inner and outer edges of one outline produce near-identical quads."""
        centers_close = np.linalg.norm(a.mean(axis=0) - b.mean(axis=0)) < distance
        return bool(centers_close and abs(area_a - area_b) < 0.1 * area_b)

    @staticmethod
    def _order_corners(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Order corners as top-left, top-right, bottom-right, bottom-left."""
        s = points.sum(axis=1)
        d = np.diff(points, axis=1).reshape(-1)
        tl = points[np.argmin(s)]
        br = points[np.argmax(s)]
        tr = points[np.argmin(d)]
        bl = points[np.argmax(d)]
        return tl, tr, br, bl
