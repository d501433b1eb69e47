"""
Frame and camera models passed from the tracking side into the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple

import numpy as np


class ImageRepresentation(Enum):
    """How the image behind a frame handle is stored."""
    VIDEO_BUFFER = "video_buffer"
    GPU_TEXTURE = "gpu_texture"


@dataclass
class FrameData:
    """
    Metadata and payload for a captured video frame.

    Attributes:
        frame: The raw frame data as a numpy array (BGR format).
        width: Frame width in pixels.
        height: Frame height in pixels.
        timestamp: Unix timestamp when frame was captured.
        frame_index: Sequential frame number since start.
        source: Identifier for the camera/video source.
    """
    frame: np.ndarray
    width: int
    height: int
    timestamp: float
    frame_index: int = 0
    source: Optional[str] = None

    @classmethod
    def from_numpy(
        cls,
        frame: np.ndarray,
        timestamp: float,
        frame_index: int = 0,
        source: Optional[str] = None,
    ) -> "FrameData":
        """Create FrameData from a numpy array."""
        h, w = frame.shape[:2]
        return cls(
            frame=frame,
            width=w,
            height=h,
            timestamp=timestamp,
            frame_index=frame_index,
            source=source,
        )

    @property
    def size(self) -> Tuple[int, int]:
        """Return (width, height)."""
        return (self.width, self.height)

    def to_handle(self) -> "FrameHandle":
        """Wrap the frame payload as a video-buffer handle."""
        return FrameHandle(
            buffer=self.frame,
            representation=ImageRepresentation.VIDEO_BUFFER,
            timestamp=self.timestamp,
            frame_index=self.frame_index,
        )


@dataclass(frozen=True)
class FrameHandle:
    """
    Opaque image handle delivered by the tracking subsystem each tick.

    The buffer is only interpreted by the inference backend, according to
    `representation`.
    """
    buffer: Any
    representation: ImageRepresentation = ImageRepresentation.VIDEO_BUFFER
    timestamp: float = 0.0
    frame_index: int = 0


def _identity_rotation() -> np.ndarray:
    return np.eye(3)


def _origin() -> np.ndarray:
    return np.zeros(3)


@dataclass
class CameraPose:
    """
    Device camera pose in world space.

    Attributes:
        position: World position (3-vector).
        rotation: 3x3 rotation matrix; column 2 is the forward axis.
    """
    position: np.ndarray = field(default_factory=_origin)
    rotation: np.ndarray = field(default_factory=_identity_rotation)

    @property
    def forward(self) -> np.ndarray:
        return np.asarray(self.rotation, dtype=float)[:, 2]

    def point_ahead(self, distance: float) -> np.ndarray:
        """World point `distance` units in front of the camera."""
        return np.asarray(self.position, dtype=float) + self.forward * distance
