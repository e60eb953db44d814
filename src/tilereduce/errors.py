"""Exception taxonomy shared by the tiling engine and its callers."""

from __future__ import annotations


class TileReduceError(RuntimeError):
    """Base class for tilereduce failures."""

    pass


class ConfigurationError(TileReduceError):
    """Raised for invalid options, bad grids, or mismatched inputs before a run."""

    pass


class TileIOError(TileReduceError):
    """Raised when a single tile's read or write fails."""

    pass


class WorkerComputationError(TileReduceError):
    """Raised when a tile worker cannot compute a result for its window."""

    pass


class AssemblyError(TileReduceError):
    """Raised when the mosaic step has no inputs or the backend fails."""

    pass


class ExternalToolError(TileIOError):
    """Raised when an external command is missing, fails, or produces no output."""

    pass
