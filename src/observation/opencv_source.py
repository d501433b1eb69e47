"""
Webcam and video-file source on cv2.VideoCapture.
"""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from models.config import CameraConfig

from .base import FrameSource


class CameraSource(FrameSource):
    """
    Reads `camera.device_id`: an int opens a webcam, a str opens a clip.

    A clip that runs out marks the source exhausted. A webcam read failure
    reopens the device once and reports no frame for that call.
    """

    def __init__(self, camera: CameraConfig, source_id: str = "camera"):
        super().__init__(source_id)
        self.camera = camera
        self._cap: Optional[cv2.VideoCapture] = None

    @property
    def is_clip(self) -> bool:
        return isinstance(self.camera.device_id, str)

    def open(self) -> None:
        if self._is_open:
            return
        self._cap = self._capture()
        self._is_open = True
        self.frames_read = 0
        self.exhausted = False
        logging.info(
            f"Camera source opened: source_id={self.source_id}, device={self.camera.device_id}, "
            f"resolution={self.camera.resolution}, fps={self.camera.fps}"
        )

    def _capture(self) -> cv2.VideoCapture:
        cap = cv2.VideoCapture(self.camera.device_id)
        if not cap.isOpened():
            cap.release()
            raise RuntimeError(f"Unable to open camera device {self.camera.device_id}")

        if not self.is_clip:
            width, height = self.camera.resolution
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            cap.set(cv2.CAP_PROP_FPS, self.camera.fps)
            # keep only the newest frame queued
            cap.set(cv2.CAP_PROP_BUFFERSIZE, self.camera.buffer_size)
        return cap

    def grab(self) -> Optional[np.ndarray]:
        if self._cap is None:
            return None

        ok, image = self._cap.read()
        if ok and image is not None:
            return image

        if self.is_clip:
            logging.info(f"End of clip {self.camera.device_id} after {self.frames_read} frames")
            self.exhausted = True
            return None

        logging.warning(f"Camera read failed on device {self.camera.device_id}, reopening")
        self._cap.release()
        try:
            self._cap = self._capture()
        except RuntimeError as e:
            logging.error(f"Camera reopen failed: {e}")
            self._cap = None
        return None

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        if self._is_open:
            logging.info(f"Camera source closed: source_id={self.source_id}")
        self._is_open = False
