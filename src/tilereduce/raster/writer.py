"""Single-tile GeoTIFF writer and output naming."""

from __future__ import annotations

import contextlib
import os
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import rasterio
from rasterio.errors import RasterioError
from rasterio.windows import transform as window_transform

from tilereduce.errors import ConfigurationError, TileIOError
from tilereduce.raster.models import RasterHandle, TileDescriptor, TileOutput

PARTIAL_SUFFIX = ".partial"


def check_nodata(dtype: str, nodata: float) -> None:
    """Reject a nodata value the output dtype cannot store exactly."""
    target = np.dtype(dtype)
    if np.issubdtype(target, np.integer):
        info = np.iinfo(target)
        if not float(nodata).is_integer() or not info.min <= nodata <= info.max:
            raise ConfigurationError(f"nodata {nodata} is not representable as {dtype}")


@dataclass(frozen=True)
class OutputSpec:
    """Where and how tile outputs are written."""

    directory: Path
    dtype: str = "int32"
    nodata: float = 0
    compression: str | None = "deflate"
    prefix: str = "T_"
    suffix: str = ".tif"

    def __post_init__(self) -> None:
        check_nodata(self.dtype, self.nodata)

    def path_for(self, descriptor: TileDescriptor) -> Path:
        """Return the deterministic output path for a tile."""
        return self.directory / f"{self.prefix}{descriptor.id}{self.suffix}"

    @property
    def pattern(self) -> str:
        """Glob pattern matching every tile output."""
        return f"{self.prefix}*{self.suffix}"


def encode_values(
    descriptor: TileDescriptor,
    output: TileOutput,
    *,
    dtype: str,
    nodata: float,
) -> np.ndarray:
    """Cast valid pixels to ``dtype`` and fill the rest with ``nodata``.

    Raises TileIOError when a valid value would be altered by the cast or
    would read back as nodata.
    """
    target = np.dtype(dtype)
    values = np.asarray(output.values)[output.valid]
    with np.errstate(invalid="ignore", over="ignore"):
        cast = values.astype(target)
    if np.issubdtype(target, np.integer):
        lossy = ~(cast == values)
    else:
        lossy = np.isinf(cast) & np.isfinite(values)
    if lossy.any():
        raise TileIOError(
            f"{int(lossy.sum())} value(s) of {descriptor.name} do not fit {dtype}, "
            f"e.g. {values[lossy][0]!r}"
        )
    if (cast == nodata).any():
        raise TileIOError(f"Valid pixels of {descriptor.name} equal the nodata value {nodata}")
    data = np.full(descriptor.shape, nodata, dtype=target)
    data[output.valid] = cast
    return data


def write_tile(
    descriptor: TileDescriptor,
    output: TileOutput | None,
    handle: RasterHandle,
    path: Path,
    *,
    dtype: str,
    nodata: float,
    compression: str | None = None,
) -> Path | None:
    """Write a worker output as a georeferenced single-tile raster."""
    if output is None:
        return None
    if output.values.shape != descriptor.shape or output.valid.shape != descriptor.shape:
        raise TileIOError(
            f"Output for {descriptor.name} has shape {output.values.shape}, "
            f"expected {descriptor.shape}"
        )
    data = encode_values(descriptor, output, dtype=dtype, nodata=nodata)
    meta = {
        "driver": "GTiff",
        "height": descriptor.size_rows,
        "width": descriptor.size_cols,
        "count": 1,
        "dtype": dtype,
        "crs": handle.crs,
        "transform": window_transform(descriptor.window, handle.transform),
        "nodata": nodata,
    }
    if compression:
        meta["compress"] = compression

    partial = path.with_name(path.name + PARTIAL_SUFFIX)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with rasterio.open(partial, "w", **meta) as dest:
            dest.write(data, 1)
        os.replace(partial, path)
    except (RasterioError, OSError) as exc:
        with contextlib.suppress(OSError):
            partial.unlink(missing_ok=True)
        raise TileIOError(f"Failed to write {descriptor.name} to {path}: {exc}") from exc
    return path
