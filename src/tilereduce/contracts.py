"""JSON-schema contracts for run configs and run reports."""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import Any, Mapping

import jsonschema

SCHEMA_VERSION = "1"
RUN_CONFIG_SCHEMA = "run_config.schema.json"
RUN_REPORT_SCHEMA = "run_report.schema.json"


@lru_cache(maxsize=None)
def load_schema(name: str) -> dict[str, Any]:
    """Load a schema bundled under ``tilereduce.schemas``."""
    text = resources.files("tilereduce.schemas").joinpath(name).read_text(encoding="utf-8")
    return json.loads(text)


def validate_run_config(config: Mapping[str, Any]) -> None:
    jsonschema.validate(dict(config), load_schema(RUN_CONFIG_SCHEMA))


def validate_run_report(report: Mapping[str, Any]) -> None:
    jsonschema.validate(dict(report), load_schema(RUN_REPORT_SCHEMA))
