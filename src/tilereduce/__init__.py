"""Tiled raster processing: partition, parallel per-tile work, mosaic assembly."""

from __future__ import annotations

__version__ = "0.3.0"

__all__ = ["__version__"]
