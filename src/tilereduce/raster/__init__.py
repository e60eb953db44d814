"""Tiling engine: partition, windowed reads, tile writes, dispatch and mosaic."""

from tilereduce.raster.dispatch import TileContext, TileWorker, process_tile, run_tiles
from tilereduce.raster.grid import tile_bounds, tile_grid_collection, write_tile_grid
from tilereduce.raster.info import check_aligned, grid_mismatch, inspect_raster
from tilereduce.raster.models import (
    MosaicResult,
    PixelWindow,
    RasterHandle,
    RunSummary,
    TileDescriptor,
    TileOutput,
    TileStatus,
    TileWorkResult,
)
from tilereduce.raster.mosaic import assemble_mosaic, build_vrt, list_tile_files
from tilereduce.raster.partition import block_size_in_pixels, partition_grid, partition_raster
from tilereduce.raster.window import read_window, read_windows
from tilereduce.raster.writer import OutputSpec, write_tile

__all__ = [
    "MosaicResult",
    "OutputSpec",
    "PixelWindow",
    "RasterHandle",
    "RunSummary",
    "TileContext",
    "TileDescriptor",
    "TileOutput",
    "TileStatus",
    "TileWorkResult",
    "TileWorker",
    "assemble_mosaic",
    "block_size_in_pixels",
    "build_vrt",
    "check_aligned",
    "grid_mismatch",
    "inspect_raster",
    "list_tile_files",
    "partition_grid",
    "partition_raster",
    "process_tile",
    "read_window",
    "read_windows",
    "run_tiles",
    "tile_bounds",
    "tile_grid_collection",
    "write_tile",
    "write_tile_grid",
]
