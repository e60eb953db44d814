"""Data models used by the tiling engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Tuple

import numpy as np
from rasterio.transform import Affine
from rasterio.windows import Window

Bounds = Tuple[float, float, float, float]
Resolution = Tuple[float, float]


@dataclass(frozen=True)
class RasterHandle:
    """Georeferenced raster on disk, shared read-only across tiles."""

    path: Path
    width: int
    height: int
    count: int
    transform: Affine
    crs: str | None
    nodata: float | None
    dtype: str

    @property
    def dims(self) -> tuple[int, int]:
        """Return (rows, cols)."""
        return (self.height, self.width)

    @property
    def resolution(self) -> Resolution:
        return (abs(self.transform.a), abs(self.transform.e))


@dataclass(frozen=True)
class TileDescriptor:
    """Rectangular pixel region of a partitioned grid."""

    id: int
    offset_row: int
    offset_col: int
    size_rows: int
    size_cols: int

    @property
    def window(self) -> Window:
        """Return the rasterio window covering this tile."""
        return Window(self.offset_col, self.offset_row, self.size_cols, self.size_rows)

    @property
    def name(self) -> str:
        return f"T_{self.id}"

    @property
    def shape(self) -> tuple[int, int]:
        return (self.size_rows, self.size_cols)

    def as_dict(self) -> dict[str, int]:
        return {
            "id": self.id,
            "offset_row": self.offset_row,
            "offset_col": self.offset_col,
            "size_rows": self.size_rows,
            "size_cols": self.size_cols,
        }


@dataclass(frozen=True)
class PixelWindow:
    """In-memory samples for one tile of one raster.

    ``data`` is always ``(bands, rows, cols)``; ``valid`` is ``(rows, cols)`` and
    is False wherever any band holds nodata or NaN.
    """

    descriptor: TileDescriptor
    data: np.ndarray
    valid: np.ndarray
    nodata: float | None

    def band(self, index: int = 1) -> np.ndarray:
        """Return a single band as a 2-D array (1-based index)."""
        return self.data[index - 1]

    @property
    def shape(self) -> tuple[int, int]:
        return (int(self.data.shape[1]), int(self.data.shape[2]))


@dataclass(frozen=True)
class TileOutput:
    """Worker result to persist: values plus the mask of pixels to keep."""

    values: np.ndarray
    valid: np.ndarray

    @property
    def valid_pixels(self) -> int:
        return int(np.count_nonzero(self.valid))


class TileStatus(str, Enum):
    """Terminal state of a tile after a run."""

    WRITTEN = "written"
    SKIPPED_EMPTY = "skipped-empty"
    SKIPPED_EXISTS = "skipped-exists"
    FAILED = "failed"


@dataclass(frozen=True)
class TileWorkResult:
    """Per-tile outcome or failure."""

    tile_id: int
    status: TileStatus
    path: Path | None = None
    error_kind: str | None = None
    error: str | None = None
    seconds: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.tile_id,
            "status": self.status.value,
            "path": str(self.path) if self.path else None,
            "error_kind": self.error_kind,
            "error": self.error,
            "seconds": round(self.seconds, 6),
        }


@dataclass(frozen=True)
class RunSummary:
    """Aggregate outcome of dispatching a worker over a tile set."""

    results: tuple[TileWorkResult, ...]
    counts: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_results(cls, results: tuple[TileWorkResult, ...]) -> "RunSummary":
        counts = {status.value: 0 for status in TileStatus}
        for result in results:
            counts[result.status.value] += 1
        return cls(results=results, counts=counts)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failures(self) -> tuple[TileWorkResult, ...]:
        return tuple(r for r in self.results if r.status is TileStatus.FAILED)

    @property
    def written_paths(self) -> tuple[Path, ...]:
        return tuple(
            r.path for r in self.results if r.status is TileStatus.WRITTEN and r.path
        )

    @property
    def ok(self) -> bool:
        return not self.failures

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "counts": dict(self.counts),
            "failed": [
                {"id": r.tile_id, "kind": r.error_kind, "error": r.error}
                for r in self.failures
            ],
            "tiles": [r.as_dict() for r in self.results],
        }


@dataclass(frozen=True)
class MosaicResult:
    """Result of assembling tile outputs into one raster."""

    path: Path
    vrt_path: Path | None
    sources: tuple[Path, ...]
    crs: str | None
    bounds: Bounds
    resolution: Resolution
