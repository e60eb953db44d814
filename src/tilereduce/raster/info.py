"""Raster inspection and grid alignment checks."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import rasterio
from pyproj import CRS
from rasterio.errors import RasterioIOError

from tilereduce.errors import ConfigurationError
from tilereduce.raster.models import RasterHandle

TRANSFORM_TOLERANCE = 1e-9


def inspect_raster(path: Path) -> RasterHandle:
    """Open a raster just long enough to capture its grid metadata."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Raster not found: {path}")
    try:
        with rasterio.open(path) as dataset:
            return RasterHandle(
                path=path,
                width=dataset.width,
                height=dataset.height,
                count=dataset.count,
                transform=dataset.transform,
                crs=dataset.crs.to_string() if dataset.crs else None,
                nodata=dataset.nodata,
                dtype=dataset.dtypes[0],
            )
    except RasterioIOError as exc:
        raise ConfigurationError(f"Unable to open raster {path}: {exc}") from exc


def _same_crs(left: str | None, right: str | None) -> bool:
    if left is None or right is None:
        return left is None and right is None
    return CRS.from_user_input(left) == CRS.from_user_input(right)


def grid_mismatch(base: RasterHandle, other: RasterHandle) -> str | None:
    """Describe how two rasters' grids differ, or return None when identical."""
    if base.dims != other.dims:
        return f"dimensions {other.dims} != {base.dims}"
    if not base.transform.almost_equals(other.transform, precision=TRANSFORM_TOLERANCE):
        return f"transform {tuple(other.transform)[:6]} != {tuple(base.transform)[:6]}"
    if not _same_crs(base.crs, other.crs):
        return f"CRS {other.crs} != {base.crs}"
    return None


def check_aligned(handles: Sequence[RasterHandle]) -> None:
    """Require every raster to share the first raster's grid."""
    if not handles:
        raise ConfigurationError("At least one input raster is required.")
    base = handles[0]
    for other in handles[1:]:
        problem = grid_mismatch(base, other)
        if problem:
            raise ConfigurationError(
                f"Input grids are not aligned: {other.path.name} vs {base.path.name}: {problem}"
            )
