"""
Pull-based frame sources for desktop runs.

There is no AR session on a desktop, so `main.run` reads a source in a loop
and hands each frame to `observation.tracking.CameraFeed`, which pushes it
to the pipeline's frame listeners.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Iterator, Optional

import numpy as np

from models.frame import FrameData


class FrameSource(ABC):
    """
    A camera or clip that yields BGR images.

    Subclasses implement `open`, `grab` and `close`; `read` stamps each image
    with a timestamp and a 1-based frame index. `exhausted` is set once a
    finite source has nothing more to give.

    Example:
        with CameraSource(config.camera) as source:
            for frame_data in source:
                feed.publish(frame_data)
    """

    def __init__(self, source_id: str = "default"):
        self.source_id = source_id
        self.frames_read = 0
        self.exhausted = False
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    @abstractmethod
    def open(self) -> None:
        """
        Raises:
            RuntimeError: If the source cannot be opened.
        """

    @abstractmethod
    def grab(self) -> Optional[np.ndarray]:
        """Next image, or None if none is available right now."""

    @abstractmethod
    def close(self) -> None:
        """Release the source. Safe to call more than once."""

    def read(self) -> Optional[FrameData]:
        if not self._is_open:
            return None
        image = self.grab()
        if image is None:
            return None
        self.frames_read += 1
        return FrameData.from_numpy(
            image,
            timestamp=time.time(),
            frame_index=self.frames_read,
            source=self.source_id,
        )

    def __enter__(self) -> "FrameSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[FrameData]:
        if not self._is_open:
            raise RuntimeError("Source must be open before iterating")
        while not self.exhausted:
            frame_data = self.read()
            if frame_data is None:
                break
            yield frame_data
