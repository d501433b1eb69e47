"""
Typed models for the detection overlay.

Detections, frames and configuration are plain dataclasses; use the
`from_dict` adapters to build them from the YAML config.
"""

from .frame import FrameData, FrameHandle, ImageRepresentation, CameraPose
from .detection import Detection, BoundingBox, RectangleObservation
from .errors import ConfigurationError, MalformedOutputError, UnsupportedImageError
from .config import (
    Config,
    CameraConfig,
    ModelConfig,
    InferenceConfig,
    PostProcessConfig,
    OverlayConfig,
    RequestKind,
)

__all__ = [
    # Frame
    "FrameData",
    "FrameHandle",
    "ImageRepresentation",
    "CameraPose",
    # Detection
    "Detection",
    "BoundingBox",
    "RectangleObservation",
    # Errors
    "ConfigurationError",
    "MalformedOutputError",
    "UnsupportedImageError",
    # Config
    "Config",
    "CameraConfig",
    "ModelConfig",
    "InferenceConfig",
    "PostProcessConfig",
    "OverlayConfig",
    "RequestKind",
]
