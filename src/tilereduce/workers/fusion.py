"""Covariate fusion: per-pixel feature records fed to a trained predictor."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

import numpy as np
import rasterio
from rasterio.errors import RasterioError

from tilereduce.errors import ConfigurationError, TileIOError, WorkerComputationError
from tilereduce.raster.models import PixelWindow, TileDescriptor, TileOutput
from tilereduce.raster.window import nodata_mask

LOGGER = logging.getLogger("tilereduce.fusion")

DEFAULT_SCALE = 100.0
DEFAULT_SENTINEL = 0.0


def normalized_difference(
    a: Any,
    b: Any,
    *,
    scale: float = DEFAULT_SCALE,
    sentinel: float = DEFAULT_SENTINEL,
) -> np.ndarray:
    """Return ``(a - b) / (a + b) * scale`` with ``sentinel`` where undefined."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        result = (a - b) / (a + b) * scale
    return np.where(np.isfinite(result), result, sentinel)


def _record_dtype(names: Sequence[str]) -> np.dtype:
    return np.dtype([(name, np.float64) for name in names])


@dataclass(frozen=True)
class FeatureSpec:
    """Named covariates plus an optional engineered normalized-difference feature."""

    covariates: tuple[str, ...]
    ratio: tuple[str, str] | None = None
    ratio_name: str = "ratio"
    scale: float = DEFAULT_SCALE
    sentinel: float = DEFAULT_SENTINEL

    def __post_init__(self) -> None:
        if not self.covariates:
            raise ConfigurationError("At least one covariate is required.")
        if len(set(self.covariates)) != len(self.covariates):
            raise ConfigurationError(f"Covariate names must be unique: {self.covariates}")
        if self.ratio is not None:
            missing = [name for name in self.ratio if name not in self.covariates]
            if missing:
                raise ConfigurationError(f"Ratio inputs are not covariates: {missing}")
            if self.ratio_name in self.covariates:
                raise ConfigurationError(f"Feature name {self.ratio_name!r} is already used.")

    @property
    def feature_names(self) -> tuple[str, ...]:
        """Column order handed to the predictor."""
        if self.ratio is None:
            return self.covariates
        return (*self.covariates, self.ratio_name)

    def records(self, values: Mapping[str, np.ndarray]) -> np.ndarray:
        """Build a structured array with one named field per feature."""
        first = np.asarray(values[self.covariates[0]])
        records = np.zeros(first.shape, dtype=_record_dtype(self.feature_names))
        for name in self.covariates:
            records[name] = values[name]
        if self.ratio is not None:
            left, right = self.ratio
            records[self.ratio_name] = normalized_difference(
                values[left],
                values[right],
                scale=self.scale,
                sentinel=self.sentinel,
            )
        return records

    def matrix(self, records: np.ndarray) -> np.ndarray:
        """Return a 2-D float array with columns ordered by feature_names."""
        if records.size == 0:
            return np.empty((0, len(self.feature_names)), dtype=np.float64)
        return np.column_stack([records[name] for name in self.feature_names])


@dataclass(frozen=True)
class FusionWorker:
    """Predict a response for every pixel where all covariates are present."""

    features: FeatureSpec
    predictor: Any
    band: int = 1

    def __call__(
        self,
        descriptor: TileDescriptor,
        windows: Sequence[PixelWindow],
        context: object = None,
    ) -> TileOutput:
        names = self.features.covariates
        if len(windows) != len(names):
            raise WorkerComputationError(
                f"Expected {len(names)} covariate windows, got {len(windows)}"
            )
        shape = descriptor.shape
        valid = np.ones(shape, dtype=bool)
        values: dict[str, np.ndarray] = {}
        for name, window in zip(names, windows):
            data = window.band(self.band)
            if data.shape != shape:
                raise WorkerComputationError(
                    f"Covariate {name} has shape {data.shape}, expected {shape}"
                )
            values[name] = data
            valid &= window.valid

        predictions = np.zeros(shape, dtype=np.float64)
        count = int(valid.sum())
        if count:
            records = self.features.records({name: data[valid] for name, data in values.items()})
            rows = self.features.matrix(records)
            predicted = np.asarray(self.predictor.predict(rows), dtype=np.float64).reshape(-1)
            if predicted.shape[0] != count:
                raise WorkerComputationError(
                    f"Predictor returned {predicted.shape[0]} values for {count} rows"
                )
            predictions[valid] = predicted
        else:
            LOGGER.debug("No complete feature rows", extra={"tile": descriptor.name})
        return TileOutput(values=predictions, valid=valid)


def _sample(path: Path, points: np.ndarray, band: int) -> tuple[np.ndarray, np.ndarray]:
    """Sample one band at point coordinates, returning values and a missing mask."""
    try:
        with rasterio.open(path) as dataset:
            data = np.array(
                [value[0] for value in dataset.sample(points, indexes=band)],
                dtype=np.float64,
            )
            nodata = dataset.nodata
            inside = np.array(
                [
                    0 <= row < dataset.height and 0 <= col < dataset.width
                    for row, col in (dataset.index(x, y) for x, y in points)
                ],
                dtype=bool,
            )
    except (RasterioError, OSError) as exc:
        raise TileIOError(f"Failed to sample {path}: {exc}") from exc
    missing = nodata_mask(data, nodata) | ~inside
    return data, missing


def build_regression_matrix(
    points: Sequence[tuple[float, float]],
    response: Path,
    predictors: Mapping[str, Path],
    *,
    features: FeatureSpec | None = None,
    response_name: str = "response",
    band: int = 1,
) -> np.ndarray:
    """Sample the response and predictor rasters at ``points``.

    Returns a structured array with ``x``, ``y``, the response and one field
    per feature (engineered ratio included). Rows where any raster is nodata
    or the point falls outside a raster are dropped.
    """
    spec = features or FeatureSpec(tuple(predictors))
    missing_inputs = [name for name in spec.covariates if name not in predictors]
    if missing_inputs:
        raise ConfigurationError(f"No raster for predictor(s): {missing_inputs}")
    if response_name in spec.feature_names or response_name in {"x", "y"}:
        raise ConfigurationError(f"Response name {response_name!r} collides with a field.")

    coords = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if coords.shape[0] == 0:
        return np.zeros(0, dtype=_record_dtype(("x", "y", response_name, *spec.feature_names)))

    response_values, keep = _sample(Path(response), coords, band)
    keep = ~keep
    sampled: dict[str, np.ndarray] = {}
    for name in spec.covariates:
        values, missing = _sample(Path(predictors[name]), coords, band)
        sampled[name] = values
        keep &= ~missing

    feature_records = spec.records({name: values[keep] for name, values in sampled.items()})
    names = ("x", "y", response_name, *spec.feature_names)
    matrix = np.zeros(int(keep.sum()), dtype=_record_dtype(names))
    matrix["x"] = coords[keep, 0]
    matrix["y"] = coords[keep, 1]
    matrix[response_name] = response_values[keep]
    for name in spec.feature_names:
        matrix[name] = feature_records[name]
    LOGGER.info("Regression matrix: %s of %s points kept.", matrix.shape[0], coords.shape[0])
    return matrix
