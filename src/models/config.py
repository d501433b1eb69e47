"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Flag
from typing import Any, Dict, List, Optional, Union


class RequestKind(Flag):
    """Kinds of vision request the inference backend is allocated for."""
    NONE = 0
    CLASSIFICATION = 1
    RECTANGLE_RECOGNITION = 2

    @classmethod
    def from_names(cls, names: List[str]) -> "RequestKind":
        """Adapter: Combine config names (e.g. ["classification"]) into flags."""
        kinds = cls.NONE
        for name in names or []:
            try:
                kinds |= cls[str(name).upper()]
            except KeyError:
                raise ValueError(f"Unknown request kind: {name}") from None
        return kinds

    def to_names(self) -> List[str]:
        return [k.name.lower() for k in (RequestKind.CLASSIFICATION, RequestKind.RECTANGLE_RECOGNITION) if k in self]


@dataclass
class CameraConfig:
    """Camera configuration."""
    device_id: Union[int, str] = 0
    resolution: List[int] = field(default_factory=lambda: [1280, 720])
    fps: int = 30
    buffer_size: int = 1

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CameraConfig":
        """Adapter: Create from config dictionary."""
        return cls(
            device_id=d.get("device_id", 0),
            resolution=list(d.get("resolution", [1280, 720])),
            fps=d.get("fps", 30),
            buffer_size=d.get("buffer_size", 1),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "resolution": self.resolution,
            "fps": self.fps,
            "buffer_size": self.buffer_size,
        }


@dataclass
class ModelConfig:
    """SSD network artifacts for the classification request."""
    path: str = ""
    config_path: Optional[str] = None
    labels_path: Optional[str] = None
    anchors_path: Optional[str] = None
    input_size: int = 300
    center_crop: bool = False
    box_output: str = "concat"
    class_output: str = "concat_1"
    box_layout: str = "yxhw"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelConfig":
        return cls(
            path=d.get("path", ""),
            config_path=d.get("config_path"),
            labels_path=d.get("labels_path"),
            anchors_path=d.get("anchors_path"),
            input_size=d.get("input_size", 300),
            center_crop=d.get("center_crop", False),
            box_output=d.get("box_output", "concat"),
            class_output=d.get("class_output", "concat_1"),
            box_layout=d.get("box_layout", "yxhw"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "path": self.path,
            "input_size": self.input_size,
            "center_crop": self.center_crop,
            "box_output": self.box_output,
            "class_output": self.class_output,
            "box_layout": self.box_layout,
        }
        for key in ("config_path", "labels_path", "anchors_path"):
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        return d


@dataclass
class InferenceConfig:
    """Inference backend allocation."""
    request_kinds: RequestKind = RequestKind.CLASSIFICATION
    max_observations: int = 10
    quadrature_tolerance: float = 15.0
    model: Optional[ModelConfig] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InferenceConfig":
        model_dict = d.get("model")
        model = ModelConfig.from_dict(model_dict) if model_dict else None
        return cls(
            request_kinds=RequestKind.from_names(d.get("request_kinds", ["classification"])),
            max_observations=d.get("max_observations", 10),
            quadrature_tolerance=d.get("quadrature_tolerance", 15.0),
            model=model,
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "request_kinds": self.request_kinds.to_names(),
            "max_observations": self.max_observations,
            "quadrature_tolerance": self.quadrature_tolerance,
        }
        if self.model:
            d["model"] = self.model.to_dict()
        return d


@dataclass
class PostProcessConfig:
    """Box decode and non-max suppression settings."""
    num_anchors: int = 1917
    num_classes: int = 91
    background_class: Optional[int] = 0
    score_threshold: float = 0.01
    nms_overlap_threshold: float = 0.5
    nms_per_class: bool = False
    box_scales: List[float] = field(default_factory=lambda: [10.0, 10.0, 5.0, 5.0])

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PostProcessConfig":
        return cls(
            num_anchors=d.get("num_anchors", 1917),
            num_classes=d.get("num_classes", 91),
            background_class=d.get("background_class", 0),
            score_threshold=d.get("score_threshold", 0.01),
            nms_overlap_threshold=d.get("nms_overlap_threshold", 0.5),
            nms_per_class=d.get("nms_per_class", False),
            box_scales=d.get("box_scales", [10.0, 10.0, 5.0, 5.0]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "num_anchors": self.num_anchors,
            "num_classes": self.num_classes,
            "background_class": self.background_class,
            "score_threshold": self.score_threshold,
            "nms_overlap_threshold": self.nms_overlap_threshold,
            "nms_per_class": self.nms_per_class,
            "box_scales": self.box_scales,
        }


@dataclass
class OverlayConfig:
    """Marker placement settings."""
    confidence_threshold: float = 0.65
    display_depth: float = 1.0
    plane_size: float = 10.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "OverlayConfig":
        return cls(
            confidence_threshold=d.get("confidence_threshold", 0.65),
            display_depth=d.get("display_depth", 1.0),
            plane_size=d.get("plane_size", 10.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence_threshold": self.confidence_threshold,
            "display_depth": self.display_depth,
            "plane_size": self.plane_size,
        }


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    camera: CameraConfig = field(default_factory=CameraConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    postprocess: PostProcessConfig = field(default_factory=PostProcessConfig)
    overlay: OverlayConfig = field(default_factory=OverlayConfig)
    log_path: str = "logs/overlay.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            camera=CameraConfig.from_dict(d.get("camera", {})),
            inference=InferenceConfig.from_dict(d.get("inference", {})),
            postprocess=PostProcessConfig.from_dict(d.get("postprocess", {})),
            overlay=OverlayConfig.from_dict(d.get("overlay", {})),
            log_path=d.get("log_path", "logs/overlay.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or logging)."""
        return {
            "camera": self.camera.to_dict(),
            "inference": self.inference.to_dict(),
            "postprocess": self.postprocess.to_dict(),
            "overlay": self.overlay.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
