"""Windowed reads of a single tile from one or more aligned rasters."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import rasterio
from rasterio.errors import RasterioError

from tilereduce.errors import TileIOError
from tilereduce.raster.models import PixelWindow, RasterHandle, TileDescriptor


def nodata_mask(data: np.ndarray, nodata: float | None) -> np.ndarray:
    """Return a boolean mask where nodata (or NaN) values are present."""
    mask = np.zeros(data.shape, dtype=bool)
    if np.issubdtype(data.dtype, np.floating):
        mask |= np.isnan(data)
    if nodata is not None and not np.isnan(nodata):
        mask |= data == nodata
    return mask


def read_window(
    handle: RasterHandle,
    descriptor: TileDescriptor,
    *,
    bands: Sequence[int] | None = None,
) -> PixelWindow:
    """Read exactly one tile's pixels from a raster."""
    indexes = list(bands) if bands else list(range(1, handle.count + 1))
    try:
        with rasterio.open(handle.path) as dataset:
            data = dataset.read(indexes, window=descriptor.window, boundless=False)
    except (RasterioError, OSError) as exc:
        raise TileIOError(f"Failed to read {descriptor.name} from {handle.path}: {exc}") from exc
    if data.shape[1:] != descriptor.shape:
        raise TileIOError(
            f"Window for {descriptor.name} read as {data.shape[1:]}, expected {descriptor.shape}"
        )
    valid = ~nodata_mask(data, handle.nodata).any(axis=0)
    return PixelWindow(descriptor=descriptor, data=data, valid=valid, nodata=handle.nodata)


def read_windows(
    handles: Sequence[RasterHandle],
    descriptor: TileDescriptor,
) -> tuple[PixelWindow, ...]:
    """Read the same tile from each aligned raster."""
    return tuple(read_window(handle, descriptor) for handle in handles)
