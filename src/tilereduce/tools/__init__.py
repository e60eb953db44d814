"""External tool wrapper exports."""

from tilereduce.tools.gdal import (
    build_command,
    buildvrt,
    option_args,
    run_named_tool,
    run_tool,
    slope,
    warp,
)

__all__ = [
    "build_command",
    "buildvrt",
    "option_args",
    "run_named_tool",
    "run_tool",
    "slope",
    "warp",
]
