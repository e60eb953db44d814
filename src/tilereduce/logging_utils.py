"""Logging setup for the tilereduce CLI and tile workers."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, MutableMapping

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
NOISY_LOGGERS = ("rasterio", "fiona", "urllib3")
_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
    "tile",
}


@dataclass(frozen=True)
class LogOptions:
    """Console verbosity plus an optional JSON-lines log file."""

    verbose: int = 0
    quiet: bool = False
    log_file: Path | None = None
    json_console: bool = False

    @property
    def console_level(self) -> int:
        if self.quiet:
            return logging.WARNING
        return logging.DEBUG if self.verbose > 0 else logging.INFO


class TileLogAdapter(logging.LoggerAdapter):
    """Stamp every record with the tile it concerns."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("tile", self.extra["tile"])
        kwargs["extra"] = extra
        return msg, kwargs


def tile_logger(logger: logging.Logger, tile: str) -> TileLogAdapter:
    """Return ``logger`` bound to a tile name such as ``T_5``."""
    return TileLogAdapter(logger, {"tile": tile})


def record_payload(record: logging.LogRecord) -> dict[str, Any]:
    """Flatten a record into the JSON-lines schema."""
    created = datetime.fromtimestamp(record.created, tz=timezone.utc)
    payload: dict[str, Any] = {
        "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "level": record.levelname.lower(),
        "logger": record.name,
    }
    tile = getattr(record, "tile", None)
    if tile:
        payload["tile"] = tile
    payload["message"] = record.getMessage()
    extra = {key: value for key, value in record.__dict__.items() if key not in _RESERVED}
    if extra:
        payload["extra"] = extra
    return payload


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = record_payload(record)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class HumanFormatter(logging.Formatter):
    """Plain text with a ``[T_<id>]`` prefix for tile records."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        tile = getattr(record, "tile", None)
        return f"[{tile}] {text}" if tile else text


def _console_handler(options: LogOptions) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(options.console_level)
    handler.setFormatter(JsonFormatter() if options.json_console else HumanFormatter(CONSOLE_FORMAT))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(JsonFormatter())
    return handler


def configure_logging(options: LogOptions) -> logging.Logger:
    """Install console and file handlers on the root logger and return it."""
    handlers = [_console_handler(options)]
    if options.log_file:
        handlers.append(_file_handler(options.log_file))

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers[:] = handlers

    library_level = logging.DEBUG if options.verbose > 1 else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
    return root
