"""Reference tile workers."""

from tilereduce.workers.change import (
    ChangeDetectionWorker,
    TransitionTable,
    build_transition_table,
    compound_label,
    write_legend,
)
from tilereduce.workers.fusion import (
    FeatureSpec,
    FusionWorker,
    build_regression_matrix,
    normalized_difference,
)

__all__ = [
    "ChangeDetectionWorker",
    "FeatureSpec",
    "FusionWorker",
    "TransitionTable",
    "build_regression_matrix",
    "build_transition_table",
    "compound_label",
    "normalized_difference",
    "write_legend",
]
