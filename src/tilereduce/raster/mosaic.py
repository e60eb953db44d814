"""Mosaic assembly of per-tile outputs through a VRT."""

from __future__ import annotations

import logging
import math
import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import rasterio
from rasterio.dtypes import _gdal_typename
from rasterio.enums import Resampling
from rasterio.errors import RasterioError
from rasterio.merge import merge
from rasterio.transform import from_origin

from tilereduce.errors import AssemblyError, ConfigurationError, ExternalToolError
from tilereduce.raster.models import Bounds, MosaicResult, Resolution
from tilereduce.tools import gdal

LOGGER = logging.getLogger("tilereduce.mosaic")
MOSAIC_BACKENDS = ("rasterio", "gdal")
RESOLUTION_TOLERANCE = 1e-9


@dataclass(frozen=True)
class _TileSource:
    path: Path
    width: int
    height: int
    bounds: Bounds


@dataclass(frozen=True)
class _Layout:
    sources: tuple[_TileSource, ...]
    crs: str | None
    crs_wkt: str | None
    bounds: Bounds
    resolution: Resolution
    band_count: int
    dtype: str
    nodata: float | None


def list_tile_files(output_dir: Path, pattern: str) -> tuple[Path, ...]:
    """Return the tile outputs present in ``output_dir``, sorted by name."""
    if not output_dir.is_dir():
        return ()
    return tuple(sorted(path for path in output_dir.glob(pattern) if path.is_file()))


def _scan_sources(paths: Sequence[Path]) -> _Layout:
    """Open each tile once and check that they can share one grid."""
    if not paths:
        raise AssemblyError("nothing to mosaic")
    sources: list[_TileSource] = []
    base_crs = None
    res_x = res_y = 0.0
    band_count = 0
    dtype = ""
    nodata = None
    for index, path in enumerate(paths):
        try:
            with rasterio.open(path) as src:
                if index == 0:
                    base_crs = src.crs
                    res_x, res_y = abs(src.res[0]), abs(src.res[1])
                    band_count = src.count
                    dtype = src.dtypes[0]
                    nodata = src.nodata
                else:
                    if src.crs != base_crs:
                        raise AssemblyError(f"{path.name}: CRS {src.crs} != {base_crs}")
                    if src.count != band_count:
                        raise AssemblyError(
                            f"{path.name}: band count {src.count} != {band_count}"
                        )
                    if not (
                        math.isclose(abs(src.res[0]), res_x, rel_tol=RESOLUTION_TOLERANCE)
                        and math.isclose(abs(src.res[1]), res_y, rel_tol=RESOLUTION_TOLERANCE)
                    ):
                        raise AssemblyError(
                            f"{path.name}: resolution {src.res} != {(res_x, res_y)}"
                        )
                bounds = src.bounds
                sources.append(
                    _TileSource(
                        path=Path(path),
                        width=src.width,
                        height=src.height,
                        bounds=(bounds.left, bounds.bottom, bounds.right, bounds.top),
                    )
                )
        except RasterioError as exc:
            raise AssemblyError(f"Unable to open tile {path}: {exc}") from exc

    min_x = min(source.bounds[0] for source in sources)
    min_y = min(source.bounds[1] for source in sources)
    max_x = max(source.bounds[2] for source in sources)
    max_y = max(source.bounds[3] for source in sources)
    wkt = " ".join(base_crs.to_wkt().split()) if base_crs else None
    return _Layout(
        sources=tuple(sources),
        crs=base_crs.to_string() if base_crs else None,
        crs_wkt=wkt,
        bounds=(min_x, min_y, max_x, max_y),
        resolution=(res_x, res_y),
        band_count=band_count,
        dtype=dtype,
        nodata=nodata,
    )


def _write_vrt(
    layout: _Layout,
    vrt_path: Path,
    *,
    dtype: str,
    nodata: float | None,
) -> None:
    min_x, min_y, max_x, max_y = layout.bounds
    res_x, res_y = layout.resolution
    width = max(1, int(round((max_x - min_x) / res_x)))
    height = max(1, int(round((max_y - min_y) / res_y)))
    transform = from_origin(min_x, max_y, res_x, res_y)

    root = ET.Element("VRTDataset", rasterXSize=str(width), rasterYSize=str(height))
    if layout.crs_wkt:
        ET.SubElement(root, "SRS").text = layout.crs_wkt
    ET.SubElement(root, "GeoTransform").text = ", ".join(
        f"{value:.10f}" for value in transform.to_gdal()
    )
    relative_root = vrt_path.parent
    for band_index in range(1, layout.band_count + 1):
        band_node = ET.SubElement(
            root,
            "VRTRasterBand",
            dataType=_gdal_typename(dtype),
            band=str(band_index),
        )
        if nodata is not None:
            ET.SubElement(band_node, "NoDataValue").text = repr(float(nodata))
        for source in layout.sources:
            left, bottom, right, top = source.bounds
            source_node = ET.SubElement(band_node, "ComplexSource")
            rel_path = os.path.relpath(source.path.resolve(), relative_root.resolve())
            ET.SubElement(
                source_node, "SourceFilename", relativeToVRT="1"
            ).text = Path(rel_path).as_posix()
            ET.SubElement(source_node, "SourceBand").text = str(band_index)
            ET.SubElement(
                source_node,
                "SrcRect",
                xOff="0",
                yOff="0",
                xSize=str(source.width),
                ySize=str(source.height),
            )
            ET.SubElement(
                source_node,
                "DstRect",
                xOff=str(int(round((left - min_x) / res_x))),
                yOff=str(int(round((max_y - top) / res_y))),
                xSize=str(max(1, int(round((right - left) / res_x)))),
                ySize=str(max(1, int(round((top - bottom) / res_y)))),
            )
            if layout.nodata is not None:
                ET.SubElement(source_node, "NODATA").text = repr(float(layout.nodata))

    vrt_path.parent.mkdir(parents=True, exist_ok=True)
    ET.ElementTree(root).write(vrt_path, encoding="utf-8", xml_declaration=True)


def build_vrt(
    paths: Sequence[Path],
    vrt_path: Path,
    *,
    dtype: str | None = None,
    nodata: float | None = None,
) -> MosaicResult:
    """Write a VRT describing how the tile files compose, without copying pixels."""
    layout = _scan_sources(paths)
    out_nodata = nodata if nodata is not None else layout.nodata
    _write_vrt(layout, vrt_path, dtype=dtype or layout.dtype, nodata=out_nodata)
    return MosaicResult(
        path=vrt_path,
        vrt_path=vrt_path,
        sources=tuple(source.path for source in layout.sources),
        crs=layout.crs,
        bounds=layout.bounds,
        resolution=layout.resolution,
    )


def _resampling(name: str) -> Resampling:
    try:
        return Resampling[name]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown resampling method: {name}") from exc


def _materialize_rasterio(
    vrt_path: Path,
    final_path: Path,
    *,
    dtype: str,
    nodata: float | None,
    resampling: str,
    compression: str | None,
    threads: int | None,
) -> None:
    dst_kwds: dict[str, object] = {
        "driver": "GTiff",
        "num_threads": str(threads) if threads else "ALL_CPUS",
    }
    if compression:
        dst_kwds["compress"] = compression
    method = _resampling(resampling)
    with rasterio.open(vrt_path) as vrt:
        merge(
            [vrt],
            nodata=nodata,
            dtype=dtype,
            resampling=method,
            method="first",
            dst_path=final_path,
            dst_kwds=dst_kwds,
        )


def assemble_mosaic(
    output_dir: Path,
    pattern: str,
    final_path: Path,
    *,
    dtype: str | None = None,
    nodata: float | None = None,
    resampling: str = "nearest",
    compression: str | None = "deflate",
    backend: str = "rasterio",
    threads: int | None = None,
) -> MosaicResult:
    """Stitch every tile output matching ``pattern`` into one raster.

    ``dtype`` and ``nodata`` default to those of the tile files.
    """
    if backend not in MOSAIC_BACKENDS:
        raise ConfigurationError(f"mosaic backend must be one of {MOSAIC_BACKENDS}, got {backend!r}")
    paths = list_tile_files(output_dir, pattern)
    if not paths:
        raise AssemblyError("nothing to mosaic")
    final_path.parent.mkdir(parents=True, exist_ok=True)
    vrt_path = final_path.with_suffix(".vrt")
    LOGGER.info("Assembling %s tile(s) into %s (%s).", len(paths), final_path, backend)

    layout = _scan_sources(paths)
    dtype = dtype or layout.dtype
    nodata = layout.nodata if nodata is None else nodata
    try:
        if backend == "rasterio":
            _write_vrt(layout, vrt_path, dtype=dtype, nodata=nodata)
            _materialize_rasterio(
                vrt_path,
                final_path,
                dtype=dtype,
                nodata=nodata,
                resampling=resampling,
                compression=compression,
                threads=threads,
            )
        else:
            gdal.buildvrt(paths, vrt_path, nodata=nodata, resampling=resampling)
            gdal.warp(
                vrt_path,
                final_path,
                dtype=dtype,
                nodata=nodata,
                resampling=resampling,
                compression=compression,
                threads=threads,
            )
    except (RasterioError, ExternalToolError, OSError, ValueError) as exc:
        final_path.unlink(missing_ok=True)
        raise AssemblyError(f"Mosaic assembly failed: {exc}") from exc

    return MosaicResult(
        path=final_path,
        vrt_path=vrt_path,
        sources=tuple(source.path for source in layout.sources),
        crs=layout.crs,
        bounds=layout.bounds,
        resolution=layout.resolution,
    )
