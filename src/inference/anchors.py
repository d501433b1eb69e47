"""
Anchor (prior box) table used to decode SSD box offsets.

The table is loaded once at startup and never modified; `as_array()` hands
out a read-only view for vectorized decoding.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from models.errors import ConfigurationError


@dataclass(frozen=True)
class AnchorBox:
    """A prior box in normalized image coordinates (center/size form)."""
    center_x: float
    center_y: float
    width: float
    height: float

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.center_x, self.center_y, self.width, self.height)


AnchorSpec = Union[str, np.ndarray, Sequence[Any]]

# SSD MobileNet v1 (COCO) anchor generator settings.
SSD_FEATURE_MAP_SIZES = (19, 10, 5, 3, 2, 1)
SSD_MIN_SCALE = 0.2
SSD_MAX_SCALE = 0.95
SSD_ASPECT_RATIOS = (1.0, 2.0, 0.5, 3.0, 1.0 / 3.0)


class AnchorBook:
    """
    Immutable ordered sequence of anchor boxes, one per network anchor index.

    Example:
        book = AnchorBook.load("models/anchors.csv", expected_count=1917)
        book.at(0)  # AnchorBox(center_x=..., ...)
    """

    def __init__(self, anchors: np.ndarray):
        anchors = np.array(anchors, dtype=np.float64)
        if anchors.ndim != 2 or anchors.shape[1] != 4:
            raise ConfigurationError(
                f"Anchor table must have shape (N, 4), got {anchors.shape}"
            )
        if anchors.shape[0] == 0:
            raise ConfigurationError("Anchor table is empty")
        if not np.all(np.isfinite(anchors)):
            raise ConfigurationError("Anchor table contains non-finite values")
        if np.any(anchors[:, 2:] <= 0):
            raise ConfigurationError("Anchor widths and heights must be positive")

        anchors.setflags(write=False)
        self._anchors = anchors

    @classmethod
    def load(cls, spec: AnchorSpec, expected_count: Optional[int] = None) -> "AnchorBook":
        """
        Build an AnchorBook from a CSV path, an (N, 4) array, or a sequence
        of (cx, cy, w, h) tuples / mappings with those keys.

        Raises:
            ConfigurationError: If the table is malformed or its length does
                not match `expected_count`.
        """
        if isinstance(spec, (str, os.PathLike)):
            rows = cls._read_csv(os.fspath(spec))
        elif isinstance(spec, np.ndarray):
            rows = spec
        else:
            rows = [cls._row_from_item(item) for item in spec]

        book = cls(np.asarray(rows, dtype=np.float64))

        if expected_count is not None and len(book) != expected_count:
            raise ConfigurationError(
                f"Anchor count mismatch: table has {len(book)} anchors, "
                f"network expects {expected_count}"
            )

        logging.info(f"Anchor book loaded: {len(book)} anchors")
        return book

    @classmethod
    def ssd_mobilenet_v1(cls) -> "AnchorBook":
        """
        Generate the 1917 anchors of the standard SSD MobileNet v1 COCO model.

        Anchors are ordered row-major over each feature map (y, then x, then
        box spec), layer by layer from the finest grid to the coarsest.
        """
        num_layers = len(SSD_FEATURE_MAP_SIZES)
        scales = [
            SSD_MIN_SCALE + (SSD_MAX_SCALE - SSD_MIN_SCALE) * i / (num_layers - 1)
            for i in range(num_layers)
        ] + [1.0]

        rows: List[Tuple[float, float, float, float]] = []
        for layer, size in enumerate(SSD_FEATURE_MAP_SIZES):
            scale, scale_next = scales[layer], scales[layer + 1]
            if layer == 0:
                box_specs = [(0.1, 1.0), (scale, 2.0), (scale, 0.5)]
            else:
                box_specs = [(scale, ar) for ar in SSD_ASPECT_RATIOS]
                box_specs.append((math.sqrt(scale * scale_next), 1.0))

            for y in range(size):
                for x in range(size):
                    cy = (y + 0.5) / size
                    cx = (x + 0.5) / size
                    for box_scale, aspect_ratio in box_specs:
                        ratio_sqrt = math.sqrt(aspect_ratio)
                        rows.append((cx, cy, box_scale * ratio_sqrt, box_scale / ratio_sqrt))

        return cls(np.asarray(rows))

    @staticmethod
    def _read_csv(path: str) -> np.ndarray:
        if not os.path.exists(path):
            raise ConfigurationError(f"Anchor file not found: {path}")
        try:
            with open(path, "r") as f:
                first = f.readline()
            skip = 0 if _is_numeric_row(first) else 1
            return np.loadtxt(path, delimiter=",", skiprows=skip, ndmin=2)
        except ValueError as e:
            raise ConfigurationError(f"Invalid anchor file {path}: {e}") from e

    @staticmethod
    def _row_from_item(item: Any) -> Tuple[float, float, float, float]:
        if isinstance(item, AnchorBox):
            return item.as_tuple()
        if isinstance(item, Mapping):
            try:
                return (
                    float(item["center_x"]),
                    float(item["center_y"]),
                    float(item["width"]),
                    float(item["height"]),
                )
            except KeyError as e:
                raise ConfigurationError(f"Anchor entry missing key {e}") from e
        values = tuple(float(v) for v in item)
        if len(values) != 4:
            raise ConfigurationError(f"Anchor entry must have 4 values, got {len(values)}")
        return values

    def at(self, index: int) -> AnchorBox:
        """Anchor box for a network anchor index."""
        cx, cy, w, h = self._anchors[index]
        return AnchorBox(center_x=float(cx), center_y=float(cy), width=float(w), height=float(h))

    def as_array(self) -> np.ndarray:
        """Read-only (N, 4) array of [cx, cy, w, h]."""
        return self._anchors

    def __len__(self) -> int:
        return int(self._anchors.shape[0])

    def __iter__(self) -> Iterator[AnchorBox]:
        for i in range(len(self)):
            yield self.at(i)


def _is_numeric_row(line: str) -> bool:
    try:
        [float(v) for v in line.strip().split(",")]
    except ValueError:
        return False
    return True
