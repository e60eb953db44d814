"""End-to-end tiled runs: inspect, partition, dispatch, report and assemble."""

from __future__ import annotations

import logging
import pickle
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

from tilereduce.errors import AssemblyError, ConfigurationError
from tilereduce.raster.dispatch import TileContext, TileWorker, run_tiles
from tilereduce.raster.grid import write_tile_grid
from tilereduce.raster.info import check_aligned, inspect_raster
from tilereduce.raster.models import MosaicResult, RasterHandle, RunSummary, TileDescriptor
from tilereduce.raster.mosaic import assemble_mosaic
from tilereduce.raster.partition import partition_raster
from tilereduce.reporting import REPORT_NAME, build_run_report, write_json
from tilereduce.run_config import RunConfig
from tilereduce.workers.change import ChangeDetectionWorker, build_transition_table, write_legend
from tilereduce.workers.fusion import FeatureSpec, FusionWorker

LOGGER = logging.getLogger("tilereduce.pipeline")

LEGEND_NAME = "legend.json"
CATEGORICAL_RESAMPLING = "nearest"
CHANGE_DTYPE = "int32"
CHANGE_NODATA = 0
PREDICTION_DTYPE = "float32"
PREDICTION_NODATA = -9999.0


@dataclass(frozen=True)
class RunOutcome:
    """Everything a tiled run produced."""

    tiles: tuple[TileDescriptor, ...]
    summary: RunSummary
    report: dict[str, Any]
    report_path: Path
    mosaic: MosaicResult | None = None
    mosaic_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.summary.ok and self.mosaic_error is None


def plan_tiles(
    handles: Sequence[RasterHandle],
    config: RunConfig,
) -> tuple[TileDescriptor, ...]:
    """Check that inputs share a grid and partition it."""
    check_aligned(handles)
    tiles = partition_raster(handles[0], config.block_size, units=config.block_units)
    LOGGER.info(
        "Partitioned %sx%s grid into %s tile(s).",
        handles[0].height,
        handles[0].width,
        len(tiles),
    )
    return tiles


def mosaic_outputs(
    output_dir: Path,
    final_path: Path,
    config: RunConfig,
    *,
    resampling: str | None = None,
    pattern: str | None = None,
) -> MosaicResult:
    """Assemble the tile outputs of a directory with the configured backend."""
    spec = config.output_spec(output_dir)
    return assemble_mosaic(
        spec.directory,
        pattern or spec.pattern,
        final_path,
        dtype=config.dtype,
        nodata=config.nodata_value,
        resampling=resampling or config.resampling_method,
        compression=config.compression,
        backend=config.mosaic_backend,
        threads=config.mosaic_threads,
    )


def run_worker(
    worker: TileWorker,
    *,
    worker_name: str,
    inputs: Sequence[Path],
    output_dir: Path,
    config: RunConfig,
    mosaic_path: Path | None = None,
    grid_path: Path | None = None,
    legend_path: Path | None = None,
    resampling: str | None = None,
) -> RunOutcome:
    """Run a tile worker over aligned inputs and write the run report."""
    handles = tuple(inspect_raster(Path(path)) for path in inputs)
    tiles = plan_tiles(handles, config)
    spec = config.output_spec(output_dir)
    if grid_path:
        write_tile_grid(grid_path, handles[0], tiles)
        LOGGER.info("Wrote tile grid to %s", grid_path)

    context = TileContext(sources=handles, output=spec)
    summary = run_tiles(
        tiles,
        worker,
        context,
        pool_size=config.pool_size,
        executor=config.executor,
    )

    mosaic = None
    mosaic_error = None
    if mosaic_path:
        try:
            mosaic = mosaic_outputs(spec.directory, mosaic_path, config, resampling=resampling)
            LOGGER.info("Wrote mosaic to %s", mosaic.path)
        except AssemblyError as exc:
            mosaic_error = str(exc)
            LOGGER.error("Mosaic assembly failed: %s", exc)

    report = build_run_report(
        worker=worker_name,
        inputs=[handle.path for handle in handles],
        output_dir=spec.directory,
        config=config.as_dict(),
        summary=summary,
        mosaic=mosaic,
        legend=legend_path,
        mosaic_error=mosaic_error,
    )
    report_path = write_json(spec.directory / REPORT_NAME, report)
    return RunOutcome(
        tiles=tiles,
        summary=summary,
        report=report,
        report_path=report_path,
        mosaic=mosaic,
        mosaic_error=mosaic_error,
    )


def run_change_detection(
    before: Path,
    after: Path,
    classes: Sequence[int],
    output_dir: Path,
    config: RunConfig,
    *,
    mosaic_path: Path | None = None,
    grid_path: Path | None = None,
) -> RunOutcome:
    """Encode class transitions between two aligned categorical rasters."""
    config = config.with_output_defaults(dtype=CHANGE_DTYPE, nodata_value=CHANGE_NODATA)
    table = build_transition_table(classes)
    legend = write_legend(output_dir / LEGEND_NAME, table)
    LOGGER.info("Transition table has %s entries.", len(table))
    if config.resampling_method != CATEGORICAL_RESAMPLING:
        LOGGER.warning(
            "Categorical outputs use %s resampling; ignoring %s.",
            CATEGORICAL_RESAMPLING,
            config.resampling_method,
        )
    return run_worker(
        ChangeDetectionWorker(table),
        worker_name="change",
        inputs=[before, after],
        output_dir=output_dir,
        config=config,
        mosaic_path=mosaic_path,
        grid_path=grid_path,
        legend_path=legend,
        resampling=CATEGORICAL_RESAMPLING,
    )


def load_predictor(path: Path) -> Any:
    """Load a pickled model exposing ``predict``."""
    try:
        with Path(path).open("rb") as handle:
            predictor = pickle.load(handle)
    except (OSError, pickle.UnpicklingError, EOFError) as exc:
        raise ConfigurationError(f"Unable to load model {path}: {exc}") from exc
    if not callable(getattr(predictor, "predict", None)):
        raise ConfigurationError(f"Model in {path} has no predict() method.")
    return predictor


def run_prediction(
    covariates: Mapping[str, Path],
    predictor: Any,
    output_dir: Path,
    config: RunConfig,
    *,
    ratio: tuple[str, str] | None = None,
    ratio_name: str = "ratio",
    mosaic_path: Path | None = None,
    grid_path: Path | None = None,
) -> RunOutcome:
    """Predict a response raster from aligned covariate rasters."""
    config = config.with_output_defaults(
        dtype=PREDICTION_DTYPE, nodata_value=PREDICTION_NODATA
    )
    features = FeatureSpec(tuple(covariates), ratio=ratio, ratio_name=ratio_name)
    LOGGER.info("Predicting from features: %s", ", ".join(features.feature_names))
    return run_worker(
        FusionWorker(features, predictor),
        worker_name="predict",
        inputs=[Path(path) for path in covariates.values()],
        output_dir=output_dir,
        config=config,
        mosaic_path=mosaic_path,
        grid_path=grid_path,
    )
