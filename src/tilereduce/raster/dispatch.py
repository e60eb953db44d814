"""Parallel per-tile dispatch with skip-if-exists and failure isolation."""

from __future__ import annotations

import logging
import os
from concurrent.futures import (
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable, Iterable, Optional, Sequence

from tilereduce.errors import ConfigurationError, TileIOError, WorkerComputationError
from tilereduce.logging_utils import tile_logger
from tilereduce.raster.models import (
    PixelWindow,
    RasterHandle,
    RunSummary,
    TileDescriptor,
    TileOutput,
    TileStatus,
    TileWorkResult,
)
from tilereduce.raster.window import read_windows
from tilereduce.raster.writer import OutputSpec, write_tile

LOGGER = logging.getLogger("tilereduce.dispatch")
EXECUTORS = ("process", "thread")


@dataclass(frozen=True)
class TileContext:
    """Read-only inputs shared by every tile of a run."""

    sources: tuple[RasterHandle, ...]
    output: OutputSpec


TileWorker = Callable[
    [TileDescriptor, Sequence[PixelWindow], TileContext], Optional[TileOutput]
]

# Populated once per pool process by the executor initializer.
_POOL_STATE: dict[str, Any] = {}


def _init_pool_process(worker: TileWorker, context: TileContext) -> None:
    _POOL_STATE["worker"] = worker
    _POOL_STATE["context"] = context


def _process_pooled_tile(descriptor: TileDescriptor) -> TileWorkResult:
    return process_tile(descriptor, _POOL_STATE["worker"], _POOL_STATE["context"])


def coerce_pool_size(pool_size: int, tile_count: int) -> int:
    """Normalize the requested worker count for a tile set."""
    size = int(pool_size)
    if size < 0:
        raise ConfigurationError("pool_size must be >= 0")
    if tile_count <= 0:
        return 1
    if size == 0:
        cpu_count = os.cpu_count() or 1
        return max(1, min(cpu_count, tile_count))
    return min(size, tile_count)


def _failure(
    descriptor: TileDescriptor,
    kind: str,
    exc: BaseException,
    start: float,
) -> TileWorkResult:
    return TileWorkResult(
        tile_id=descriptor.id,
        status=TileStatus.FAILED,
        error_kind=kind,
        error=str(exc) or type(exc).__name__,
        seconds=perf_counter() - start,
    )


def process_tile(
    descriptor: TileDescriptor,
    worker: TileWorker,
    context: TileContext,
) -> TileWorkResult:
    """Run read, compute and write for one tile, returning its outcome."""
    start = perf_counter()
    log = tile_logger(LOGGER, descriptor.name)
    path = context.output.path_for(descriptor)
    if path.exists():
        return TileWorkResult(descriptor.id, TileStatus.SKIPPED_EXISTS, path=path)
    try:
        windows = read_windows(context.sources, descriptor)
        try:
            output = worker(descriptor, windows, context)
        except (TileIOError, WorkerComputationError):
            raise
        except Exception as exc:
            raise WorkerComputationError(f"{type(exc).__name__}: {exc}") from exc
        if output is None:
            log.debug("No output for tile")
            return TileWorkResult(
                descriptor.id,
                TileStatus.SKIPPED_EMPTY,
                seconds=perf_counter() - start,
            )
        if not isinstance(output, TileOutput):
            raise WorkerComputationError(
                f"Worker returned {type(output).__name__}, expected TileOutput or None"
            )
        spec = context.output
        write_tile(
            descriptor,
            output,
            context.sources[0],
            path,
            dtype=spec.dtype,
            nodata=spec.nodata,
            compression=spec.compression,
        )
    except TileIOError as exc:
        log.warning("Tile I/O failed: %s", exc)
        return _failure(descriptor, "TileIOError", exc, start)
    except WorkerComputationError as exc:
        log.warning("Tile computation failed: %s", exc)
        return _failure(descriptor, "WorkerComputationError", exc, start)
    except Exception as exc:
        log.exception("Tile failed unexpectedly: %s", exc)
        kind = "TileIOError" if isinstance(exc, OSError) else "WorkerComputationError"
        return _failure(descriptor, kind, exc, start)
    log.debug("Wrote %s", path.name)
    return TileWorkResult(
        descriptor.id,
        TileStatus.WRITTEN,
        path=path,
        seconds=perf_counter() - start,
    )


def _make_executor(
    executor: str,
    pool_size: int,
    worker: TileWorker,
    context: TileContext,
) -> Executor:
    if executor == "process":
        return ProcessPoolExecutor(
            max_workers=pool_size,
            initializer=_init_pool_process,
            initargs=(worker, context),
        )
    return ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="tile")


def run_tiles(
    descriptors: Iterable[TileDescriptor],
    worker: TileWorker,
    context: TileContext,
    *,
    pool_size: int = 0,
    executor: str = "process",
) -> RunSummary:
    """Dispatch a worker over every tile and collect per-tile outcomes."""
    descriptors = list(descriptors)
    if executor not in EXECUTORS:
        raise ConfigurationError(f"executor must be one of {EXECUTORS}, got {executor!r}")
    if not context.sources:
        raise ConfigurationError("At least one input raster is required.")
    ids = [descriptor.id for descriptor in descriptors]
    if len(set(ids)) != len(ids):
        raise ConfigurationError("Tile ids must be unique within a run.")

    results: dict[int, TileWorkResult] = {}
    pending: list[TileDescriptor] = []
    for descriptor in descriptors:
        path = context.output.path_for(descriptor)
        if path.exists():
            results[descriptor.id] = TileWorkResult(
                descriptor.id, TileStatus.SKIPPED_EXISTS, path=path
            )
        else:
            pending.append(descriptor)
    if results:
        LOGGER.info("Skipping %s tile(s) with existing output.", len(results))

    workers = coerce_pool_size(pool_size, len(pending))
    context.output.directory.mkdir(parents=True, exist_ok=True)
    if pending:
        LOGGER.info(
            "Processing %s tile(s) with %s %s worker(s).",
            len(pending),
            workers,
            executor,
        )
    if workers == 1 or len(pending) <= 1:
        for descriptor in pending:
            results[descriptor.id] = process_tile(descriptor, worker, context)
    else:
        with _make_executor(executor, workers, worker, context) as pool:
            future_map: dict[Future[TileWorkResult], tuple[TileDescriptor, float]] = {}
            for descriptor in pending:
                if executor == "process":
                    future = pool.submit(_process_pooled_tile, descriptor)
                else:
                    future = pool.submit(process_tile, descriptor, worker, context)
                future_map[future] = (descriptor, perf_counter())
            for future in as_completed(future_map):
                descriptor, submitted = future_map[future]
                try:
                    results[descriptor.id] = future.result()
                except Exception as exc:
                    tile_logger(LOGGER, descriptor.name).warning("Tile task failed: %s", exc)
                    results[descriptor.id] = _failure(
                        descriptor, "WorkerComputationError", exc, submitted
                    )

    summary = RunSummary.from_results(tuple(results[tile_id] for tile_id in ids))
    log_run_summary(summary, prefix=context.output.prefix)
    return summary


def log_run_summary(summary: RunSummary, *, prefix: str = "T_") -> None:
    """Log tile counts and every failed tile id with its cause."""
    counts = summary.counts
    LOGGER.info(
        "Tiles: %s total, %s written, %s skipped-empty, %s skipped-exists, %s failed.",
        summary.total,
        counts.get(TileStatus.WRITTEN.value, 0),
        counts.get(TileStatus.SKIPPED_EMPTY.value, 0),
        counts.get(TileStatus.SKIPPED_EXISTS.value, 0),
        counts.get(TileStatus.FAILED.value, 0),
    )
    for failure in summary.failures:
        tile_logger(LOGGER, f"{prefix}{failure.tile_id}").error(
            "%s: %s", failure.error_kind, failure.error
        )
