"""Top-level package for the labops camera-lab run tooling."""

from __future__ import annotations

from importlib import metadata
from typing import Optional, Sequence

try:
    __version__ = metadata.version("labops")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.1.0"


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Convenience wrapper that dispatches a CLI invocation."""
    from .cli.main import main

    return main(list(argv) if argv is not None else None)


__all__ = ["__version__", "run"]
