"""Tile grid export as a GeoJSON polygon layer."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

from rasterio.windows import bounds as window_bounds

from tilereduce.raster.models import Bounds, RasterHandle, TileDescriptor


def tile_bounds(handle: RasterHandle, descriptor: TileDescriptor) -> Bounds:
    """Return (left, bottom, right, top) of a tile in map coordinates."""
    left, bottom, right, top = window_bounds(descriptor.window, handle.transform)
    return (
        min(left, right),
        min(bottom, top),
        max(left, right),
        max(bottom, top),
    )


def tile_feature(handle: RasterHandle, descriptor: TileDescriptor) -> dict[str, Any]:
    """Return a GeoJSON Feature with the tile footprint and its layout."""
    left, bottom, right, top = tile_bounds(handle, descriptor)
    ring = [
        [left, bottom],
        [right, bottom],
        [right, top],
        [left, top],
        [left, bottom],
    ]
    return {
        "type": "Feature",
        "geometry": {"type": "Polygon", "coordinates": [ring]},
        "properties": descriptor.as_dict(),
    }


def tile_grid_collection(
    handle: RasterHandle,
    descriptors: Sequence[TileDescriptor],
) -> dict[str, Any]:
    """Return the tile grid as a GeoJSON FeatureCollection."""
    collection: dict[str, Any] = {
        "type": "FeatureCollection",
        "features": [tile_feature(handle, descriptor) for descriptor in descriptors],
    }
    if handle.crs:
        collection["crs"] = {"type": "name", "properties": {"name": handle.crs}}
    return collection


def write_tile_grid(
    path: Path,
    handle: RasterHandle,
    descriptors: Sequence[TileDescriptor],
) -> Path:
    """Write the tile grid GeoJSON to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(tile_grid_collection(handle, descriptors), indent=2),
        encoding="utf-8",
    )
    return path
