"""
Error types raised by the overlay pipeline.

Configuration errors are fatal and surface at startup. The per-cycle errors
are caught at the gate/post-processing boundary and turned into an empty
detection list for that cycle.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid startup configuration (anchor/class mismatch, missing model, bad values)."""


class MalformedOutputError(ValueError):
    """Raw network output that cannot be decoded (wrong shape, NaN values)."""


class UnsupportedImageError(TypeError):
    """Image handle whose representation the backend cannot read."""
