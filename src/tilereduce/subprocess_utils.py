"""Blocking subprocess calls for the GDAL command-line tools."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import Sequence

LOGGER = logging.getLogger("tilereduce.subprocess")
TIMEOUT_RETURNCODE = 124


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured streams of a finished command."""

    command: list[str]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def _as_text(raw: str | bytes | None) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw or ""


def tail_text(text: str, *, max_lines: int = 20) -> str:
    """Keep the last ``max_lines`` lines of tool output for error messages."""
    return "\n".join(text.strip().splitlines()[-max_lines:])


def run_command(
    command: Sequence[str | Path],
    *,
    cwd: Path | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run ``command`` to completion; timeouts come back as exit code 124."""
    argv = [str(token) for token in command]
    start = perf_counter()
    try:
        completed = subprocess.run(
            argv,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        notice = f"Command timed out after {timeout} seconds."
        stderr = _as_text(exc.stderr).rstrip()
        LOGGER.warning("%s: %s", argv[0], notice)
        return CommandResult(
            argv,
            TIMEOUT_RETURNCODE,
            _as_text(exc.stdout),
            f"{stderr}\n{notice}" if stderr else notice,
            timed_out=True,
            seconds=perf_counter() - start,
        )
    return CommandResult(
        argv,
        completed.returncode,
        completed.stdout,
        completed.stderr,
        seconds=perf_counter() - start,
    )
