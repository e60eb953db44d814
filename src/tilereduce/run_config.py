"""Run configuration loading and normalization helpers."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Union

import jsonschema

from tilereduce.contracts import validate_run_config
from tilereduce.errors import ConfigurationError
from tilereduce.raster.writer import OutputSpec

DEFAULT_DTYPE = "int32"
DEFAULT_NODATA = 0

BlockSizeValue = Union[int, float, tuple[float, float]]

_ALIASES = {
    "nodata": "nodata_value",
    "output_dir": "output_directory",
    "workers": "pool_size",
    "jobs": "pool_size",
    "resampling": "resampling_method",
    "prefix": "tile_prefix",
}


@dataclass(frozen=True)
class RunConfig:
    """Normalized options for a tiled run."""

    block_size: BlockSizeValue = 1024
    block_units: str = "pixels"
    pool_size: int = 0
    executor: str = "process"
    output_directory: str | None = None
    tile_prefix: str = "T_"
    dtype: str | None = None
    nodata_value: float | None = None
    compression: str | None = "deflate"
    resampling_method: str = "nearest"
    mosaic_backend: str = "rasterio"
    mosaic_threads: int | None = None

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if isinstance(self.block_size, tuple):
            payload["block_size"] = list(self.block_size)
        return payload

    def with_overrides(self, **overrides: Any) -> "RunConfig":
        """Return a copy with every non-None override applied and re-validated."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        if not changes:
            return self
        return normalize_run_config({**self.as_dict(), **changes})

    def with_output_defaults(self, *, dtype: str, nodata_value: float) -> "RunConfig":
        """Fill an unset output dtype or nodata with a worker's own defaults."""
        return replace(
            self,
            dtype=self.dtype or dtype,
            nodata_value=nodata_value if self.nodata_value is None else self.nodata_value,
        )

    def output_spec(self, directory: Path | None = None) -> OutputSpec:
        """Return the tile output layout for this config."""
        target = directory or (Path(self.output_directory) if self.output_directory else None)
        if target is None:
            raise ConfigurationError("An output directory is required.")
        return OutputSpec(
            directory=Path(target),
            dtype=self.dtype or DEFAULT_DTYPE,
            nodata=DEFAULT_NODATA if self.nodata_value is None else self.nodata_value,
            compression=self.compression,
            prefix=self.tile_prefix,
        )


def _normalize_block_size(value: object) -> BlockSizeValue:
    if isinstance(value, (list, tuple)):
        return tuple(value)  # type: ignore[return-value]
    return value  # type: ignore[return-value]


def normalize_run_config(payload: Mapping[str, Any]) -> RunConfig:
    """Normalize a raw run config payload into canonical keys and validate it."""
    data: dict[str, Any] = {}
    for key, value in payload.items():
        data[_ALIASES.get(key, key)] = value
    mosaic = data.pop("mosaic", None)
    if isinstance(mosaic, Mapping):
        for key in ("backend", "threads"):
            if key in mosaic:
                data.setdefault(f"mosaic_{key}", mosaic[key])
        if "resampling" in mosaic:
            data.setdefault("resampling_method", mosaic["resampling"])
    if isinstance(data.get("compression"), str) and data["compression"].lower() == "none":
        data["compression"] = None
    if isinstance(data.get("block_size"), tuple):
        data["block_size"] = list(data["block_size"])
    data.pop("schema_version", None)

    try:
        validate_run_config(data)
    except jsonschema.ValidationError as exc:
        location = ".".join(str(part) for part in exc.absolute_path) or "config"
        raise ConfigurationError(f"Invalid run config at {location}: {exc.message}") from exc

    if "block_size" in data:
        data["block_size"] = _normalize_block_size(data["block_size"])
    return RunConfig(**data)


def load_run_config(path: Path) -> RunConfig:
    """Load and validate a run config file from disk."""
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Unable to read run config {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Run config {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ConfigurationError("Run config must be a JSON object.")
    return normalize_run_config(payload)
