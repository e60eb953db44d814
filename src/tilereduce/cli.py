"""Command-line interface for tilereduce."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Sequence

from tilereduce import __version__
from tilereduce.errors import AssemblyError, ConfigurationError, ExternalToolError
from tilereduce.logging_utils import LogOptions, configure_logging
from tilereduce.pipeline import (
    RunOutcome,
    load_predictor,
    mosaic_outputs,
    run_change_detection,
    run_prediction,
)
from tilereduce.raster.dispatch import EXECUTORS
from tilereduce.raster.grid import write_tile_grid
from tilereduce.raster.info import inspect_raster
from tilereduce.raster.mosaic import MOSAIC_BACKENDS
from tilereduce.raster.partition import BLOCK_UNITS, partition_raster
from tilereduce.run_config import RunConfig, load_run_config
from tilereduce.tools import gdal

RESAMPLING_CHOICES = ("nearest", "bilinear", "cubic", "average", "mode")
EXIT_FAILED_TILES = 1
EXIT_CONFIG = 2
LOGGER = logging.getLogger("tilereduce.cli")


def _add_block_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--block-size",
        type=float,
        nargs="+",
        metavar="SIZE",
        help="Tile size as one value or ROWS COLS.",
    )
    parser.add_argument(
        "--block-units",
        choices=BLOCK_UNITS,
        help="Interpret --block-size as pixels or map units.",
    )


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    """Register options shared by the tiled run subcommands."""
    _add_block_options(parser)
    parser.add_argument("--output-dir", required=True, help="Directory for tile outputs.")
    parser.add_argument(
        "-j",
        "--pool-size",
        type=int,
        help="Worker count (0 uses every CPU).",
    )
    parser.add_argument("--executor", choices=EXECUTORS, help="Worker pool kind.")
    parser.add_argument("--tile-prefix", help="Tile file name prefix.")
    parser.add_argument("--dtype", help="Output data type.")
    parser.add_argument("--nodata", type=float, help="Output nodata value.")
    parser.add_argument("--compression", help="GeoTIFF compression (or 'none').")
    parser.add_argument("--grid-out", help="Write the tile grid as GeoJSON.")
    _add_mosaic_options(parser)
    parser.add_argument("--mosaic", help="Assemble tile outputs into this raster.")


def _add_mosaic_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--resampling", choices=RESAMPLING_CHOICES, help="Mosaic resampling.")
    parser.add_argument("--mosaic-backend", choices=MOSAIC_BACKENDS, help="Mosaic backend.")
    parser.add_argument("--mosaic-threads", type=int, help="Threads for mosaic writes.")


def _add_partition_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the partition subcommand."""
    partition = subparsers.add_parser("partition", help="Show or save the tile layout of a raster.")
    partition.add_argument("--raster", required=True, help="Raster whose grid is partitioned.")
    _add_block_options(partition)
    partition.add_argument("--grid-out", help="Write the tile grid as GeoJSON.")


def _add_change_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the change detection subcommand."""
    change = subparsers.add_parser("change", help="Encode land-cover class transitions.")
    change.add_argument("--before", required=True, help="Earlier categorical raster.")
    change.add_argument("--after", required=True, help="Later categorical raster.")
    change.add_argument(
        "--classes",
        type=int,
        nargs="+",
        required=True,
        help="Every class code that may appear in either raster.",
    )
    _add_run_options(change)


def _add_predict_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the covariate fusion subcommand."""
    predict = subparsers.add_parser("predict", help="Predict a raster from covariates.")
    predict.add_argument(
        "--covariate",
        action="append",
        required=True,
        metavar="NAME=PATH",
        help="Named covariate raster (repeatable, order defines feature order).",
    )
    predict.add_argument("--model", required=True, help="Pickled model exposing predict().")
    predict.add_argument(
        "--ratio",
        nargs=2,
        metavar=("A", "B"),
        help="Add the normalized difference of two covariates as a feature.",
    )
    predict.add_argument("--ratio-name", default="ratio", help="Name of the ratio feature.")
    _add_run_options(predict)


def _add_mosaic_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the mosaic subcommand."""
    mosaic = subparsers.add_parser("mosaic", help="Assemble existing tile outputs.")
    mosaic.add_argument("--output-dir", required=True, help="Directory with tile outputs.")
    mosaic.add_argument("--pattern", help="Glob for tile files (default from tile prefix).")
    mosaic.add_argument("--output", required=True, help="Final raster path.")
    mosaic.add_argument("--dtype", help="Output data type.")
    mosaic.add_argument("--nodata", type=float, help="Output nodata value.")
    mosaic.add_argument("--compression", help="GeoTIFF compression (or 'none').")
    _add_mosaic_options(mosaic)


def _add_slope_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the slope subcommand."""
    slope = subparsers.add_parser("slope", help="Derive slope from a DEM with gdaldem.")
    slope.add_argument("--dem", required=True, help="Input DEM.")
    slope.add_argument("--output", required=True, help="Output slope raster.")
    slope.add_argument("--scale", type=float, help="Ratio of vertical to horizontal units.")
    slope.add_argument("--percent", action="store_true", help="Express slope as percent.")
    slope.add_argument("--tool", nargs="+", default=["gdaldem"], help="gdaldem command.")


def _add_version_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the version subcommand."""
    subparsers.add_parser("version", help="Print the current version.")


def _block_size(values: Sequence[float] | None) -> Any:
    if not values:
        return None
    sizes = [int(value) if float(value).is_integer() else value for value in values]
    if len(sizes) == 1:
        return sizes[0]
    if len(sizes) == 2:
        return sizes
    raise ConfigurationError("--block-size takes one value or ROWS COLS.")


def _resolve_config(args: argparse.Namespace) -> RunConfig:
    """Load the config file, then apply CLI overrides."""
    config = load_run_config(Path(args.config)) if args.config else RunConfig()
    return config.with_overrides(
        block_size=_block_size(getattr(args, "block_size", None)),
        block_units=getattr(args, "block_units", None),
        pool_size=getattr(args, "pool_size", None),
        executor=getattr(args, "executor", None),
        output_directory=getattr(args, "output_dir", None),
        tile_prefix=getattr(args, "tile_prefix", None),
        dtype=getattr(args, "dtype", None),
        nodata_value=getattr(args, "nodata", None),
        compression=getattr(args, "compression", None),
        resampling_method=getattr(args, "resampling", None),
        mosaic_backend=getattr(args, "mosaic_backend", None),
        mosaic_threads=getattr(args, "mosaic_threads", None),
    )


def _parse_covariates(values: Sequence[str]) -> dict[str, Path]:
    covariates: dict[str, Path] = {}
    for value in values:
        name, sep, path = value.partition("=")
        if not sep or not name or not path:
            raise ConfigurationError(f"--covariate expects NAME=PATH, got {value!r}")
        if name in covariates:
            raise ConfigurationError(f"Duplicate covariate name: {name}")
        covariates[name] = Path(path)
    return covariates


def _finish_run(outcome: RunOutcome) -> int:
    LOGGER.info("Run report written to %s", outcome.report_path)
    if not outcome.summary.ok:
        LOGGER.error("%s tile(s) failed.", len(outcome.summary.failures))
        return EXIT_FAILED_TILES
    if outcome.mosaic_error:
        return EXIT_FAILED_TILES
    return 0


def _run_command(args: argparse.Namespace) -> int:
    if args.command == "version":
        print(__version__)
        return 0
    if args.command == "partition":
        config = _resolve_config(args)
        handle = inspect_raster(Path(args.raster))
        tiles = partition_raster(handle, config.block_size, units=config.block_units)
        if args.grid_out:
            write_tile_grid(Path(args.grid_out), handle, tiles)
            LOGGER.info("Wrote %s tile(s) to %s", len(tiles), args.grid_out)
        else:
            print(json.dumps([tile.as_dict() for tile in tiles], indent=2))
        return 0
    if args.command == "change":
        config = _resolve_config(args)
        outcome = run_change_detection(
            Path(args.before),
            Path(args.after),
            args.classes,
            Path(args.output_dir),
            config,
            mosaic_path=Path(args.mosaic) if args.mosaic else None,
            grid_path=Path(args.grid_out) if args.grid_out else None,
        )
        return _finish_run(outcome)
    if args.command == "predict":
        config = _resolve_config(args)
        covariates = _parse_covariates(args.covariate)
        outcome = run_prediction(
            covariates,
            load_predictor(Path(args.model)),
            Path(args.output_dir),
            config,
            ratio=tuple(args.ratio) if args.ratio else None,
            ratio_name=args.ratio_name,
            mosaic_path=Path(args.mosaic) if args.mosaic else None,
            grid_path=Path(args.grid_out) if args.grid_out else None,
        )
        return _finish_run(outcome)
    if args.command == "mosaic":
        config = _resolve_config(args)
        result = mosaic_outputs(
            Path(args.output_dir),
            Path(args.output),
            config,
            pattern=args.pattern,
        )
        LOGGER.info("Wrote mosaic of %s tile(s) to %s", len(result.sources), result.path)
        return 0
    if args.command == "slope":
        output = gdal.slope(
            Path(args.dem),
            Path(args.output),
            scale=args.scale,
            percent=args.percent,
            tool_cmd=args.tool,
        )
        LOGGER.info("Wrote slope raster to %s", output)
        return 0
    raise ConfigurationError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = argparse.ArgumentParser(
        prog="tilereduce",
        description="Tiled raster processing with parallel per-tile workers",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )
    parser.add_argument(
        "--config",
        help="JSON run config; command-line options override it.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_partition_parser(subparsers)
    _add_change_parser(subparsers)
    _add_predict_parser(subparsers)
    _add_mosaic_parser(subparsers)
    _add_slope_parser(subparsers)
    _add_version_parser(subparsers)

    args = parser.parse_args(argv)
    log_file_value = getattr(args, "log_file", None)
    configure_logging(
        LogOptions(
            verbose=args.verbose or 0,
            quiet=bool(args.quiet),
            log_file=Path(log_file_value) if log_file_value else None,
            json_console=bool(args.log_json),
        )
    )

    try:
        return _run_command(args)
    except ConfigurationError as exc:
        LOGGER.error("Configuration error: %s", exc)
        return EXIT_CONFIG
    except (AssemblyError, ExternalToolError) as exc:
        LOGGER.error("%s", exc)
        return EXIT_FAILED_TILES
