"""
Rendering host interface.

The host owns the scene graph; the overlay only asks it for marker
entities and pushes geometry, labels, visibility and the root transform.
"""

from __future__ import annotations

from typing import Protocol

import numpy as np


class MarkerEntity(Protocol):
    def set_geometry(self, position: np.ndarray, width: float, height: float) -> None:
        ...

    def set_label(self, position: np.ndarray, text: str) -> None:
        ...

    def set_visible(self, visible: bool) -> None:
        ...

    def set_transform(self, position: np.ndarray, rotation: np.ndarray) -> None:
        ...


class RenderHost(Protocol):
    def create_marker(self) -> MarkerEntity:
        ...
