"""Allow ``python -m labops`` to launch the CLI."""

from __future__ import annotations

import sys

from labops.cli.main import main


if __name__ == "__main__":
    sys.exit(main())
