"""
Fixed-capacity marker slots.

Each cycle the ranked detections are bound to slots by position: the k-th
qualifying detection goes to slot k. Slots that receive nothing are hidden,
never destroyed, so their entity is reused when the index is occupied again.

Known limitation: assignment follows rank, not identity. When two nearly
tied detections swap rank between cycles their markers swap slots too.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from models.config import OverlayConfig
from models.detection import Detection
from models.frame import CameraPose

from .host import MarkerEntity, RenderHost


@dataclass
class Slot:
    """One reusable display unit in the pool."""
    index: int
    occupied: bool = False
    entity: Optional[MarkerEntity] = None
    last_position: Optional[Tuple[float, float, float]] = None
    last_size: Optional[Tuple[float, float]] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class MarkerGeometry:
    """Marker placement in the camera-attached plane."""
    position: Tuple[float, float, float]
    width: float
    height: float


def compute_geometry(detection: Detection, depth: float = 1.0, plane_size: float = 10.0) -> MarkerGeometry:
    """
    Map a normalized box onto a plane `depth` units in front of the viewer.

    Coordinates are centered on the image (subtract 0.5) and y is flipped so
    up is positive. Width and height are divided by `plane_size`, the native
    edge length of the host's marker primitive, so they can be used directly
    as its local scale.
    """
    x_min = detection.x_min - 0.5
    y_min = detection.y_min - 0.5
    x_max = detection.x_max - 0.5
    y_max = detection.y_max - 0.5

    x_center = (x_max - x_min) / 2 + x_min
    y_center = -((y_max - y_min) / 2 + y_min)

    width = (x_max - x_min) * depth / plane_size
    height = (y_max - y_min) * depth / plane_size

    return MarkerGeometry(
        position=(x_center * depth, y_center * depth, 0.0),
        width=width,
        height=height,
    )


class SlotManager:
    """
    Binds each cycle's ranked detections onto a fixed pool of markers.

    Only the render context may call `apply` and `follow`.
    """

    def __init__(
        self,
        host: RenderHost,
        capacity: int = 10,
        confidence_threshold: float = 0.65,
        display_depth: float = 1.0,
        plane_size: float = 10.0,
    ):
        """
        Initialize the slot pool.

        Args:
            host: Rendering host that creates marker entities
            capacity: Number of slots; a hard bound on visible markers
            confidence_threshold: Minimum confidence for a detection to be shown
            display_depth: Distance of the marker plane in front of the camera
            plane_size: Native edge length of the host's marker primitive
        """
        if capacity <= 0:
            raise ValueError("Slot capacity must be a positive integer")
        if display_depth <= 0:
            raise ValueError("display_depth must be positive")
        if plane_size <= 0:
            raise ValueError("plane_size must be positive")

        self.host = host
        self.capacity = capacity
        self.confidence_threshold = confidence_threshold
        self.display_depth = display_depth
        self.plane_size = plane_size

        self.slots: List[Slot] = [Slot(index=i) for i in range(capacity)]

        logging.info(f"Slot manager initialized with {capacity} slots")

    @property
    def occupied_count(self) -> int:
        return sum(1 for slot in self.slots if slot.occupied)

    def apply(self, detections: Sequence[Detection]) -> int:
        """
        Bind this cycle's detections to slots and update visibility.

        Args:
            detections: Detections ranked by descending confidence.

        Returns:
            Number of occupied slots after the update.
        """
        found = [False] * self.capacity
        index = -1

        for detection in detections:
            if detection.confidence < self.confidence_threshold:
                continue

            index += 1
            if index >= self.capacity:
                break

            slot = self.slots[index]
            if slot.entity is None:
                slot.entity = self.host.create_marker()

            geometry = compute_geometry(detection, self.display_depth, self.plane_size)
            position = np.array(geometry.position, dtype=float)
            label = detection.label

            logging.debug(
                f"Slot {index}: {label} {detection.confidence:.3f} "
                f"box=({detection.x_min:.3f}, {detection.y_min:.3f}, {detection.x_max:.3f}, {detection.y_max:.3f}) "
                f"center=({geometry.position[0]:.3f}, {geometry.position[1]:.3f}) "
                f"size=({geometry.width:.4f}, {geometry.height:.4f})"
            )

            slot.entity.set_geometry(position, geometry.width, geometry.height)
            slot.entity.set_label(position, label)

            slot.last_position = geometry.position
            slot.last_size = (geometry.width, geometry.height)
            slot.label = label
            found[index] = True

        for slot in self.slots:
            slot.occupied = found[slot.index]
            if slot.entity is not None:
                slot.entity.set_visible(slot.occupied)

        return self.occupied_count

    def follow(self, pose: CameraPose) -> None:
        """Place every created marker `display_depth` in front of the camera, facing it."""
        position = pose.point_ahead(self.display_depth)
        rotation = np.asarray(pose.rotation, dtype=float)
        for slot in self.slots:
            if slot.entity is not None:
                slot.entity.set_transform(position, rotation)

    def clear(self) -> None:
        """Hide every marker."""
        self.apply([])


def create_slot_manager_from_config(
    host: RenderHost,
    overlay_cfg: OverlayConfig,
    capacity: int,
) -> SlotManager:
    """Factory: Build a SlotManager from OverlayConfig."""
    return SlotManager(
        host,
        capacity=capacity,
        confidence_threshold=overlay_cfg.confidence_threshold,
        display_depth=overlay_cfg.display_depth,
        plane_size=overlay_cfg.plane_size,
    )
