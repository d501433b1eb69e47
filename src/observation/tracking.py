"""
Push-style camera feed for desktop runs.

Stands in for the AR tracking subsystem: every published frame is delivered
to the registered frame listeners together with the current camera pose.
A fixed webcam never moves, so the pose stays at its initial value unless
`set_pose` is called.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from models.frame import CameraPose, FrameData, FrameHandle

FrameListener = Callable[[FrameHandle, CameraPose], None]


class CameraFeed:
    """Fan-out of frames to listeners, in registration order."""

    def __init__(self, pose: Optional[CameraPose] = None):
        self.pose = pose or CameraPose()
        self._listeners: List[FrameListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_frame_listener(self, listener: FrameListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_frame_listener(self, listener: FrameListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_pose(self, pose: CameraPose) -> None:
        self.pose = pose

    def publish(self, frame: FrameData) -> FrameHandle:
        """Deliver one frame to every listener."""
        handle = frame.to_handle()
        for listener in list(self._listeners):
            try:
                listener(handle, self.pose)
            except Exception as e:
                logging.warning(f"Frame listener error: {e}")
        return handle
