"""Categorical change detection between two aligned land-cover rasters."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

from tilereduce.errors import ConfigurationError, WorkerComputationError
from tilereduce.raster.models import PixelWindow, TileDescriptor, TileOutput

LABEL_SEPARATOR = "_"
FIRST_CODE = 1


def compound_label(before: int, after: int) -> str:
    """Return the ``"before_after"`` label of a class transition."""
    return f"{before}{LABEL_SEPARATOR}{after}"


@dataclass(frozen=True)
class TransitionTable:
    """Every ordered class pair mapped to a sequential integer code.

    Codes are assigned row-major over ``classes``: the pair at positions
    ``(i, j)`` gets ``i * K + j + 1``. Identity pairs keep a code so the table
    always has exactly K**2 entries.
    """

    classes: tuple[int, ...]

    def __post_init__(self) -> None:
        if not self.classes:
            raise ConfigurationError("At least one class code is required.")
        if len(set(self.classes)) != len(self.classes):
            raise ConfigurationError(f"Class codes must be unique: {self.classes}")

    def __len__(self) -> int:
        return len(self.classes) ** 2

    def _position(self, value: int) -> int:
        try:
            return self.classes.index(value)
        except ValueError as exc:
            raise KeyError(value) from exc

    def code_for(self, before: int, after: int) -> int:
        """Return the code for the transition ``before -> after``."""
        row = self._position(int(before))
        col = self._position(int(after))
        return row * len(self.classes) + col + FIRST_CODE

    def label_for(self, code: int) -> str:
        """Return the compound label behind a transition code."""
        index = int(code) - FIRST_CODE
        if index < 0 or index >= len(self):
            raise KeyError(code)
        row, col = divmod(index, len(self.classes))
        return compound_label(self.classes[row], self.classes[col])

    def as_dict(self) -> dict[str, int]:
        """Return ``label -> code`` for every entry, in code order."""
        return {
            compound_label(before, after): self.code_for(before, after)
            for before in self.classes
            for after in self.classes
        }


def build_transition_table(classes: Iterable[int]) -> TransitionTable:
    """Build the transition table for a set of class codes."""
    return TransitionTable(tuple(int(value) for value in classes))


def write_legend(path: Path, table: TransitionTable) -> Path:
    """Write the ``label -> code`` legend as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(table.as_dict(), indent=2), encoding="utf-8")
    return path


@dataclass(frozen=True)
class ChangeDetectionWorker:
    """Encode class transitions between a "before" and an "after" window."""

    table: TransitionTable
    band: int = 1

    def __call__(
        self,
        descriptor: TileDescriptor,
        windows: Sequence[PixelWindow],
        context: object = None,
    ) -> TileOutput | None:
        if len(windows) != 2:
            raise WorkerComputationError(
                f"Change detection needs two windows, got {len(windows)}"
            )
        first, second = windows
        before = first.band(self.band)
        after = second.band(self.band)
        if before.shape != after.shape:
            raise WorkerComputationError(
                f"Window shapes differ for {descriptor.name}: {before.shape} vs {after.shape}"
            )
        valid = first.valid & second.valid

        classes = np.asarray(self.table.classes)
        present = np.union1d(before[valid], after[valid])
        unknown = np.setdiff1d(present, classes)
        if unknown.size:
            raise WorkerComputationError(
                f"Unknown class value(s) {unknown.tolist()} in {descriptor.name}"
            )

        changed = valid & (before != after)
        if not changed.any():
            return None

        pairs = np.stack([before[changed], after[changed]], axis=1)
        unique_pairs, inverse = np.unique(pairs, axis=0, return_inverse=True)
        pair_codes = np.array(
            [self.table.code_for(int(old), int(new)) for old, new in unique_pairs],
            dtype=np.int64,
        )
        values = np.zeros(before.shape, dtype=np.int64)
        values[changed] = pair_codes[inverse.reshape(-1)]
        return TileOutput(values=values, valid=changed)
