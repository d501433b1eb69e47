from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from models.config import Config
from observation.base import FrameSource
from observation.tracking import CameraFeed
from overlay.opencv_host import OpenCvRenderHost
from pipeline.engine import CycleResult, OverlayPipeline


@dataclass
class RuntimeContext:
    """Holds runtime state and service references; avoids global singletons."""

    config: Config
    source: FrameSource
    feed: CameraFeed
    pipeline: OverlayPipeline
    host: OpenCvRenderHost
    backend: Any = None

    # Latest applied cycle, reported by the run loop
    last_cycle: dict = field(default_factory=dict)

    def on_cycle(self, cycle: CycleResult) -> None:
        """Pipeline callback: forward rectangle observations to the host."""
        self.host.set_rectangles(cycle.rectangles)
        self.last_cycle = {
            "completed_at": cycle.completed_at,
            "detections": len(cycle.detections),
            "rectangles": len(cycle.rectangles),
            "failed": cycle.error is not None,
        }
