"""
Frame sources and the push-style camera feed.

Sources return FrameData objects; CameraFeed pushes them to frame listeners
the way an AR session would.
"""

from .base import FrameSource
from .opencv_source import CameraSource
from .tracking import CameraFeed

__all__ = [
    "FrameSource",
    "CameraSource",
    "CameraFeed",
]
