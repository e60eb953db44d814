"""Run report construction helpers."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

from tilereduce.contracts import SCHEMA_VERSION, validate_run_report
from tilereduce.raster.models import MosaicResult, RunSummary

REPORT_NAME = "run_report.json"


def _utc_now() -> str:
    """Return the current UTC timestamp as ISO8601."""
    return datetime.now(timezone.utc).isoformat()


def mosaic_entry(result: MosaicResult | None) -> dict[str, Any] | None:
    """Describe an assembled mosaic for the run report."""
    if result is None:
        return None
    return {
        "path": str(result.path),
        "vrt_path": str(result.vrt_path) if result.vrt_path else None,
        "sources": len(result.sources),
        "crs": result.crs,
        "bounds": list(result.bounds),
        "resolution": list(result.resolution),
    }


def build_run_report(
    *,
    worker: str,
    inputs: Iterable[Path],
    output_dir: Path,
    config: Mapping[str, Any],
    summary: RunSummary,
    mosaic: MosaicResult | None = None,
    legend: Path | None = None,
    mosaic_error: str | None = None,
) -> dict[str, Any]:
    """Create a run report dictionary."""
    report = {
        "schema_version": SCHEMA_VERSION,
        "created_at": _utc_now(),
        "worker": worker,
        "inputs": [str(path) for path in inputs],
        "output_directory": str(output_dir),
        "config": dict(config),
        "tile_count": summary.total,
        "summary": summary.as_dict(),
        "mosaic": mosaic_entry(mosaic),
        "legend": str(legend) if legend else None,
        "mosaic_error": mosaic_error,
    }
    validate_run_report(report)
    return report


def write_json(path: Path, payload: Mapping[str, Any]) -> Path:
    """Write a JSON payload to disk with indentation."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path
