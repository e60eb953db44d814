"""Module entrypoint for `python -m tilereduce`."""

from __future__ import annotations

from tilereduce.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
