from __future__ import annotations

from pathlib import Path
from typing import Tuple

import numpy as np
import rasterio
from rasterio.transform import from_bounds

from tilereduce.raster.models import TileDescriptor


def write_raster(
    path: Path,
    data: np.ndarray,
    *,
    bounds: Tuple[float, float, float, float] | None = None,
    crs: str | None = "EPSG:32633",
    nodata: float | None = None,
) -> Path:
    """Write a small GeoTIFF; 2-D data is one band, 3-D data is (bands, rows, cols)."""
    if data.ndim == 2:
        data = data[np.newaxis, ...]
    count, height, width = data.shape
    if bounds is None:
        bounds = (500000.0, 4000000.0 - height * 10.0, 500000.0 + width * 10.0, 4000000.0)
    transform = from_bounds(*bounds, width=width, height=height)
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=count,
        dtype=data.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dataset:
        dataset.write(data)
    return path


def tile(tile_id: int, row: int, col: int, rows: int, cols: int) -> TileDescriptor:
    return TileDescriptor(
        id=tile_id,
        offset_row=row,
        offset_col=col,
        size_rows=rows,
        size_cols=cols,
    )


class SumPredictor:
    """Picklable stand-in model: prediction is the row sum of its features."""

    def __init__(self) -> None:
        self.calls: list[int] = []

    def predict(self, rows: np.ndarray) -> np.ndarray:
        self.calls.append(len(rows))
        return np.asarray(rows, dtype=np.float64).sum(axis=1)


class ShortPredictor:
    """Returns one prediction too few."""

    def predict(self, rows: np.ndarray) -> np.ndarray:
        return np.zeros(max(0, len(rows) - 1))


class HalfPredictor:
    """Prediction is ``0.5 * x - 0.5`` of the first feature."""

    def predict(self, rows: np.ndarray) -> np.ndarray:
        return np.asarray(rows, dtype=np.float64)[:, 0] * 0.5 - 0.5
