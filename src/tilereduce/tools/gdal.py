"""Wrappers for the GDAL command-line tools used around the tiling engine."""

from __future__ import annotations

import logging
import shutil
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Union

from rasterio.dtypes import _gdal_typename

from tilereduce.errors import ExternalToolError
from tilereduce.subprocess_utils import run_command, tail_text

LOGGER = logging.getLogger("tilereduce.tools")

ToolCommand = Union[Sequence[str], Path, str]
OptionValue = Union[str, int, float, bool, Sequence[Any], None]

PYTHON_NAMES = {"python", "python.exe", "python3", "python3.exe", "py", "py.exe"}


def _normalize_tool_cmd(tool_cmd: ToolCommand) -> list[str]:
    """Normalize a tool command into a list of strings."""
    if isinstance(tool_cmd, Path):
        return [str(tool_cmd)]
    if isinstance(tool_cmd, str):
        return [tool_cmd]
    return [str(item) for item in tool_cmd]


def _has_python_exe(command: Sequence[str]) -> bool:
    return any(Path(token).name.lower() in PYTHON_NAMES for token in command)


def build_command(tool_cmd: ToolCommand, args: Sequence[str]) -> list[str]:
    """Build a tool command line, running ``.py`` tools with this interpreter."""
    command = _normalize_tool_cmd(tool_cmd)
    if not command:
        raise ExternalToolError("Tool command is required.")
    tool_token = command[-1]
    if Path(tool_token).suffix.lower() == ".py" and not _has_python_exe(command[:-1]):
        command = [*command[:-1], sys.executable, tool_token]
    elif len(command) == 1 and shutil.which(tool_token) is None and not Path(tool_token).exists():
        raise ExternalToolError(f"{tool_token} not found on PATH.")
    return [*command, *args]


def option_args(options: Mapping[str, OptionValue]) -> list[str]:
    """Translate named options into ``-name value`` arguments.

    ``True`` becomes a bare flag, ``False``/``None`` are dropped and sequences
    repeat the flag once per value (``{"co": ["A=1", "B=2"]}``).
    """
    args: list[str] = []
    for name, value in options.items():
        flag = name if name.startswith("-") else f"-{name}"
        if value is None or value is False:
            continue
        if value is True:
            args.append(flag)
        elif isinstance(value, (list, tuple)):
            for item in value:
                args.extend([flag, str(item)])
        else:
            args.extend([flag, str(value)])
    return args


def run_tool(
    tool_cmd: ToolCommand,
    args: Sequence[str],
    output: Path,
    *,
    timeout: float | None = None,
) -> Path:
    """Run a tool that must produce ``output``, raising ExternalToolError otherwise."""
    command = build_command(tool_cmd, [str(arg) for arg in args])
    name = Path(_normalize_tool_cmd(tool_cmd)[-1]).name
    LOGGER.debug("Running %s", " ".join(command))
    result = run_command(command, timeout=timeout)
    if result.timed_out:
        raise ExternalToolError(f"{name} timed out: {tail_text(result.stderr)}")
    if result.returncode != 0:
        detail = tail_text(result.stderr) or tail_text(result.stdout)
        raise ExternalToolError(f"{name} failed with exit code {result.returncode}: {detail}")
    if not output.exists():
        raise ExternalToolError(f"{name} reported success but {output} was not written.")
    LOGGER.debug("%s finished in %.2fs", name, result.seconds)
    return output


def run_named_tool(
    tool_cmd: ToolCommand,
    inputs: Sequence[Path],
    output: Path,
    options: Mapping[str, OptionValue] | None = None,
    *,
    timeout: float | None = None,
) -> Path:
    """Run ``tool [options] inputs... output`` and return the output path."""
    output.parent.mkdir(parents=True, exist_ok=True)
    args = [*option_args(options or {}), *(str(path) for path in inputs), str(output)]
    return run_tool(tool_cmd, args, output, timeout=timeout)


def buildvrt(
    inputs: Sequence[Path],
    vrt_path: Path,
    *,
    nodata: float | None = None,
    resampling: str = "nearest",
    tool_cmd: ToolCommand = "gdalbuildvrt",
    timeout: float | None = None,
) -> Path:
    """Describe ``inputs`` as a virtual mosaic with gdalbuildvrt."""
    if not inputs:
        raise ExternalToolError("gdalbuildvrt needs at least one input.")
    options: dict[str, OptionValue] = {"overwrite": True, "r": resampling}
    if nodata is not None:
        options["srcnodata"] = nodata
        options["vrtnodata"] = nodata
    vrt_path.parent.mkdir(parents=True, exist_ok=True)
    args = [*option_args(options), str(vrt_path), *(str(path) for path in inputs)]
    return run_tool(tool_cmd, args, vrt_path, timeout=timeout)


def warp(
    source: Path,
    destination: Path,
    *,
    dtype: str | None = None,
    nodata: float | None = None,
    resampling: str = "nearest",
    compression: str | None = None,
    threads: int | None = None,
    tool_cmd: ToolCommand = "gdalwarp",
    timeout: float | None = None,
) -> Path:
    """Materialize ``source`` into a GeoTIFF with gdalwarp."""
    creation = [f"COMPRESS={compression.upper()}"] if compression else []
    creation.append(f"NUM_THREADS={threads or 'ALL_CPUS'}")
    options: dict[str, OptionValue] = {
        "overwrite": True,
        "multi": True,
        "of": "GTiff",
        "r": resampling,
        "ot": _gdal_typename(dtype) if dtype else None,
        "dstnodata": nodata,
        "wo": f"NUM_THREADS={threads or 'ALL_CPUS'}",
        "co": creation,
    }
    return run_named_tool(tool_cmd, [source], destination, options, timeout=timeout)


def slope(
    dem: Path,
    output: Path,
    *,
    scale: float | None = None,
    percent: bool = False,
    tool_cmd: ToolCommand = "gdaldem",
    timeout: float | None = None,
) -> Path:
    """Derive slope from a DEM with ``gdaldem slope``."""
    options: dict[str, OptionValue] = {
        "s": scale,
        "p": percent,
        "compute_edges": True,
    }
    output.parent.mkdir(parents=True, exist_ok=True)
    args = ["slope", *option_args(options), str(dem), str(output)]
    return run_tool(tool_cmd, args, output, timeout=timeout)
