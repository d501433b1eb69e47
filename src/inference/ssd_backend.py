"""
SSD classification backend on OpenCV DNN.

Runs an SSD MobileNet style network and returns its raw box/class tensors
without any decoding, so the same post-processing works for every backend.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from models.errors import ConfigurationError

from .backend import RawOutput


@dataclass(frozen=True)
class SsdConfig:
    model_path: str
    config_path: Optional[str] = None
    input_size: int = 300
    center_crop: bool = False
    box_output: str = "concat"
    class_output: str = "concat_1"
    box_layout: str = "yxhw"


# Column order that turns each raw box row into (dx, dy, dw, dh).
BOX_LAYOUTS = {
    "yxhw": [1, 0, 3, 2],  # TensorFlow Object Detection API box coder
    "xywh": [0, 1, 2, 3],
}


class SsdDnnClassifier:
    def __init__(self, cfg: SsdConfig):
        self.cfg = cfg
        if cfg.box_layout not in BOX_LAYOUTS:
            raise ConfigurationError(
                f"Unknown box layout {cfg.box_layout!r}, expected one of {sorted(BOX_LAYOUTS)}"
            )
        for path in (cfg.model_path, cfg.config_path):
            if path and not os.path.exists(path):
                raise ConfigurationError(f"Model artifact not found: {path}")
        if not cfg.model_path:
            raise ConfigurationError("inference.model.path is required for classification")

        try:
            self._net = cv2.dnn.readNet(cfg.model_path, cfg.config_path or "")
        except cv2.error as e:
            raise ConfigurationError(f"Unable to load model {cfg.model_path}: {e}") from e

        logging.info(f"SSD classifier loaded: {cfg.model_path}")

    def _prepare(self, image: np.ndarray) -> np.ndarray:
        if image.shape[2] == 1:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        elif image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

        if self.cfg.center_crop:
            h, w = image.shape[:2]
            side = min(h, w)
            top = (h - side) // 2
            left = (w - side) // 2
            image = image[top:top + side, left:left + side]

        size = self.cfg.input_size
        return cv2.dnn.blobFromImage(
            image,
            scalefactor=1.0 / 127.5,
            size=(size, size),
            mean=(127.5, 127.5, 127.5),
            swapRB=True,
            crop=False,
        )

    def classify(self, image: np.ndarray) -> RawOutput:
        self._net.setInput(self._prepare(image))
        boxes, classes = self._net.forward([self.cfg.box_output, self.cfg.class_output])

        num_anchors = int(np.prod(boxes.shape) // 4)
        return RawOutput(
            box_offsets=boxes.reshape(num_anchors, 4)[:, BOX_LAYOUTS[self.cfg.box_layout]],
            class_logits=classes.reshape(num_anchors, -1),
        )
