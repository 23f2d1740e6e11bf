"""Centralized logging configuration for labops."""

from __future__ import annotations

import contextlib
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional, Union

from labops.core.logging_utils import FIELDS_ATTR, MODULE_LOGGER_NAMESPACE, current_run_id

_DEFAULT_MAX_BYTES = 500 * 1024
_DEFAULT_BACKUP_COUNT = 2

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

LOG_LEVEL_CHOICES = "debug|info|warn|error"

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}

_configured = False


def parse_log_level(text: str) -> int:
    """Map ``--log-level`` text onto a logging level.

    Raises:
        ValueError: with the operator-facing message when the value is unknown.
    """
    if not text:
        raise ValueError(f"missing value for --log-level (expected {LOG_LEVEL_CHOICES})")
    level = LOG_LEVELS.get(text.strip().lower())
    if level is None:
        raise ValueError(f"invalid --log-level '{text}' (expected {LOG_LEVEL_CHOICES})")
    return level


def escape_log_value(value: str) -> str:
    out = []
    for ch in value:
        if ch == "\\":
            out.append("\\\\")
        elif ch == '"':
            out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        else:
            out.append(ch)
    return "".join(out)


class KeyValueFormatter(logging.Formatter):
    """Render records as ``ts_utc=... level=... run_id="..." msg="..." k="v"``."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        ts_text = ts.strftime("%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}Z"
        level = _LEVEL_NAMES.get(record.levelno, record.levelname)
        parts = [
            f"ts_utc={ts_text}",
            f"level={level}",
            f'run_id="{escape_log_value(current_run_id())}"',
            f'msg="{escape_log_value(record.getMessage())}"',
        ]
        fields = getattr(record, FIELDS_ATTR, None) or {}
        for key, value in fields.items():
            parts.append(f'{key}="{escape_log_value(str(value))}"')
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        return parse_log_level(level)
    return int(level)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    force: bool = False,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = _DEFAULT_MAX_BYTES,
    backup_count: int = _DEFAULT_BACKUP_COUNT,
    suppressed_loggers: Iterable[str] = (),
) -> None:
    """Configure the labops logger tree with the key/value formatter.

    Args:
        level: Desired logging level (int or name such as "warn").
        force: When True, always rebuild handlers even if configured.
        console: Whether to emit logs to stderr.
        log_file: Optional path for a rotating file handler.
        max_bytes: Max bytes before rotating the log file.
        backup_count: Number of rotated log files to keep.
        suppressed_loggers: Collection of logger names to silence to ERROR.
    """

    global _configured
    numeric_level = _coerce_level(level)
    target = logging.getLogger(MODULE_LOGGER_NAMESPACE)

    if _configured and not force:
        target.setLevel(numeric_level)
        for name in suppressed_loggers:
            logging.getLogger(name).setLevel(logging.ERROR)
        return

    for handler in list(target.handlers):
        target.removeHandler(handler)
        with contextlib.suppress(Exception):
            handler.close()

    formatter = KeyValueFormatter()

    if console:
        # stdout is reserved for command output
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(numeric_level)
        stream_handler.setFormatter(formatter)
        target.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        target.addHandler(file_handler)

    target.setLevel(numeric_level)
    target.propagate = False

    for name in suppressed_loggers:
        logging.getLogger(name).setLevel(logging.ERROR)

    _configured = True


__all__ = [
    "configure_logging",
    "parse_log_level",
    "escape_log_value",
    "KeyValueFormatter",
    "LOG_LEVELS",
]
