"""
Inference backend interface.

Backends take a decoded image and return the raw network tensors (and any
rectangle observations); decoding and suppression happen in
`inference.postprocess`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

import numpy as np

from models.config import RequestKind
from models.detection import RectangleObservation
from models.errors import UnsupportedImageError
from models.frame import ImageRepresentation


@dataclass(frozen=True)
class RawOutput:
    """
    Raw SSD output for one image.

    Attributes:
        box_offsets: (N, 4) per-anchor offsets ordered (dx, dy, dw, dh).
        class_logits: (N, C) per-anchor per-class logits.
    """
    box_offsets: np.ndarray
    class_logits: np.ndarray

    @property
    def num_anchors(self) -> int:
        return int(np.shape(self.box_offsets)[0]) if np.ndim(self.box_offsets) else 0


@dataclass
class InferenceResult:
    """Everything one backend evaluation produced."""
    raw: Optional[RawOutput] = None
    rectangles: List[RectangleObservation] = field(default_factory=list)


class InferenceBackend(Protocol):
    def configure(self, request_kinds: RequestKind, max_observations: int) -> None:
        ...

    def run_inference(self, image: np.ndarray) -> InferenceResult:
        ...


def image_from_handle(buffer: Any, representation: ImageRepresentation) -> np.ndarray:
    """
    Read the pixels behind a frame handle into an HxWxC uint8 array.

    VIDEO_BUFFER handles are numpy arrays (or anything numpy can wrap).
    GPU_TEXTURE handles are `cv2.UMat`/`cv2.cuda_GpuMat`-like objects exposing
    `get()` or `download()`.

    Raises:
        UnsupportedImageError: If the handle cannot be read as an image.
    """
    if representation is ImageRepresentation.VIDEO_BUFFER:
        image = np.asarray(buffer)
    elif representation is ImageRepresentation.GPU_TEXTURE:
        if hasattr(buffer, "download"):
            image = np.asarray(buffer.download())
        elif hasattr(buffer, "get"):
            image = np.asarray(buffer.get())
        else:
            raise UnsupportedImageError(
                f"GPU texture handle of type {type(buffer).__name__} has no download()/get()"
            )
    else:
        raise UnsupportedImageError(f"Unknown image representation: {representation}")

    if image.ndim == 2:
        image = image[:, :, np.newaxis]
    if image.ndim != 3 or image.shape[0] == 0 or image.shape[1] == 0:
        raise UnsupportedImageError(f"Expected an HxWxC image, got shape {image.shape}")
    return image
