"""Grid partitioning into fixed-size tiles."""

from __future__ import annotations

import math
from typing import Tuple, Union

from tilereduce.errors import ConfigurationError
from tilereduce.raster.models import RasterHandle, Resolution, TileDescriptor

TILE_ID_BASE = 1
BLOCK_UNITS = ("pixels", "map")

BlockSize = Union[int, float, Tuple[float, float]]


def _pair(block_size: BlockSize) -> tuple[float, float]:
    """Return (rows, cols) from a scalar or pair block size."""
    if isinstance(block_size, (tuple, list)):
        if len(block_size) != 2:
            raise ConfigurationError("block_size pair must have exactly two values.")
        return (float(block_size[0]), float(block_size[1]))
    return (float(block_size), float(block_size))


def block_size_in_pixels(block_size: BlockSize, resolution: Resolution) -> tuple[int, int]:
    """Convert a ground-distance block size into whole pixels (rows, cols)."""
    size_y, size_x = _pair(block_size)
    res_x, res_y = resolution
    if size_x <= 0 or size_y <= 0:
        raise ConfigurationError(f"block_size must be > 0, got {block_size}")
    if res_x <= 0 or res_y <= 0:
        raise ConfigurationError(f"Invalid pixel size: {resolution}")
    rows = max(1, int(round(size_y / res_y)))
    cols = max(1, int(round(size_x / res_x)))
    return (rows, cols)


def partition_grid(
    dims: tuple[int, int],
    block_size: BlockSize,
    *,
    id_base: int = TILE_ID_BASE,
) -> tuple[TileDescriptor, ...]:
    """Split a (rows, cols) grid into row-major tiles of at most block_size pixels."""
    n_rows, n_cols = (int(dims[0]), int(dims[1]))
    if n_rows <= 0 or n_cols <= 0:
        raise ConfigurationError(f"Raster dimensions must be > 0, got {dims}")
    raw_rows, raw_cols = _pair(block_size)
    if raw_rows != int(raw_rows) or raw_cols != int(raw_cols):
        raise ConfigurationError(f"Pixel block_size must be whole pixels, got {block_size}")
    block_rows, block_cols = int(raw_rows), int(raw_cols)
    if block_rows <= 0 or block_cols <= 0:
        raise ConfigurationError(f"block_size must be > 0, got {block_size}")
    if block_rows > n_rows or block_cols > n_cols:
        raise ConfigurationError(
            f"block_size {block_rows}x{block_cols} exceeds raster extent {n_rows}x{n_cols}"
        )

    tiles_down = math.ceil(n_rows / block_rows)
    tiles_across = math.ceil(n_cols / block_cols)
    tiles = []
    tile_id = id_base
    for tile_row in range(tiles_down):
        row_off = tile_row * block_rows
        size_rows = min(block_rows, n_rows - row_off)
        for tile_col in range(tiles_across):
            col_off = tile_col * block_cols
            size_cols = min(block_cols, n_cols - col_off)
            tiles.append(
                TileDescriptor(
                    id=tile_id,
                    offset_row=row_off,
                    offset_col=col_off,
                    size_rows=size_rows,
                    size_cols=size_cols,
                )
            )
            tile_id += 1
    return tuple(tiles)


def partition_raster(
    handle: RasterHandle,
    block_size: BlockSize,
    *,
    units: str = "pixels",
) -> tuple[TileDescriptor, ...]:
    """Partition a raster's grid, converting map-unit block sizes first."""
    if units not in BLOCK_UNITS:
        raise ConfigurationError(f"block units must be one of {BLOCK_UNITS}, got {units!r}")
    if units == "map":
        block_size = block_size_in_pixels(block_size, handle.resolution)
    return partition_grid(handle.dims, block_size)
