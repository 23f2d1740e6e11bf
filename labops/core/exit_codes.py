"""Process exit codes surfaced by the CLI."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    USAGE = 2
    SCHEMA_INVALID = 10
    BACKEND_CONNECT_FAILED = 20
    BACKEND_NOT_AVAILABLE = 21
    THRESHOLDS_FAILED = 30


__all__ = ["ExitCode"]
