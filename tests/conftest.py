"""
Pytest configuration and shared fixtures.
"""

import os
import sys
from concurrent.futures import Future

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from inference.anchors import AnchorBook  # noqa: E402
from inference.backend import InferenceResult, RawOutput  # noqa: E402


class FakeMarker:
    """Marker entity that records every call."""

    def __init__(self):
        self.position = None
        self.width = None
        self.height = None
        self.text = None
        self.visible = None
        self.transform = None
        self.geometry_calls = 0

    def set_geometry(self, position, width, height):
        self.position = tuple(float(v) for v in position)
        self.width = width
        self.height = height
        self.geometry_calls += 1

    def set_label(self, position, text):
        self.text = text

    def set_visible(self, visible):
        self.visible = visible

    def set_transform(self, position, rotation):
        self.transform = (np.asarray(position), np.asarray(rotation))


class FakeHost:
    """Render host that hands out FakeMarkers."""

    def __init__(self):
        self.markers = []

    def create_marker(self):
        marker = FakeMarker()
        self.markers.append(marker)
        return marker


class ManualExecutor:
    """Executor that queues jobs until `run_pending` is called."""

    def __init__(self):
        self.jobs = []
        self.is_shutdown = False

    def submit(self, fn, *args, **kwargs):
        if self.is_shutdown:
            raise RuntimeError("cannot schedule new futures after shutdown")
        future = Future()
        self.jobs.append((future, fn, args, kwargs))
        return future

    def run_pending(self):
        jobs, self.jobs = self.jobs, []
        for future, fn, args, kwargs in jobs:
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)
        return len(jobs)

    def shutdown(self, wait=True):
        self.is_shutdown = True


class InlineExecutor(ManualExecutor):
    """Executor that runs each job immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = super().submit(fn, *args, **kwargs)
        self.run_pending()
        return future


class StaticBackend:
    """Backend returning a fixed RawOutput, or raising a fixed error."""

    def __init__(self, raw=None, error=None):
        self.raw = raw
        self.error = error
        self.calls = 0

    def configure(self, request_kinds, max_observations):
        pass

    def run_inference(self, image):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return InferenceResult(raw=self.raw)


NUM_CLASSES = 4


def make_raw(num_anchors, boxes=None, scores=None, num_classes=NUM_CLASSES):
    """
    Build a RawOutput with zero box offsets and very low logits.

    Args:
        boxes: {anchor_index: (dx, dy, dw, dh)} offsets to set.
        scores: {anchor_index: (class_id, logit)} logits to set.
    """
    offsets = np.zeros((num_anchors, 4))
    logits = np.full((num_anchors, num_classes), -20.0)
    for i, value in (boxes or {}).items():
        offsets[i] = value
    for i, (class_id, logit) in (scores or {}).items():
        logits[i, class_id] = logit
    return RawOutput(box_offsets=offsets, class_logits=logits)


def logit(p):
    """Inverse sigmoid."""
    return float(np.log(p / (1.0 - p)))


@pytest.fixture
def fake_host():
    return FakeHost()


@pytest.fixture
def manual_executor():
    return ManualExecutor()


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def small_anchors():
    """Eight anchors: two overlapping boxes near the top-left and six spread out."""
    return AnchorBook.load([
        (0.5, 0.5, 0.2, 0.2),
        (0.2, 0.2, 0.2, 0.2),
        (0.235, 0.215, 0.17, 0.19),
        (0.8, 0.8, 0.1, 0.1),
        (0.8, 0.2, 0.1, 0.1),
        (0.2, 0.8, 0.1, 0.1),
        (0.5, 0.2, 0.1, 0.1),
        (0.5, 0.8, 0.1, 0.1),
    ])


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
camera:
  device_id: 0
  resolution: [640, 480]
  fps: 30

inference:
  request_kinds: [classification]
  max_observations: 10
  model:
    path: "models/ssd.pb"

overlay:
  confidence_threshold: 0.65
  display_depth: 1.0

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "camera": {
            "device_id": 0,
            "resolution": [1280, 720],
            "fps": 30,
        },
        "inference": {
            "request_kinds": ["classification"],
            "max_observations": 10,
            "model": {"path": "models/ssd.pb"},
        },
        "postprocess": {
            "num_anchors": 1917,
            "num_classes": 91,
            "score_threshold": 0.01,
            "nms_overlap_threshold": 0.5,
        },
        "overlay": {
            "confidence_threshold": 0.65,
            "display_depth": 1.0,
            "plane_size": 10.0,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }
