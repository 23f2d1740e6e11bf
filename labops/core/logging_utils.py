"""Shared logging helpers for labops."""

from __future__ import annotations

import logging
from typing import Any, Dict, MutableMapping, Optional, Tuple, Union

MODULE_LOGGER_NAMESPACE = "labops"
DEFAULT_COMPONENT = "Core"
DEFAULT_RUN_ID = "-"
FIELDS_ATTR = "labops_fields"

# Keyword arguments the stdlib logging calls understand; anything else is a field.
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

_current_run_id = DEFAULT_RUN_ID


def set_run_id(run_id: Optional[str]) -> None:
    """Bind the run id rendered on every subsequent log line."""
    global _current_run_id
    _current_run_id = run_id or DEFAULT_RUN_ID


def current_run_id() -> str:
    return _current_run_id


def _qualified_name(name: Optional[str]) -> str:
    if not name:
        return MODULE_LOGGER_NAMESPACE
    if name == MODULE_LOGGER_NAMESPACE or name.startswith(MODULE_LOGGER_NAMESPACE + "."):
        return name
    return f"{MODULE_LOGGER_NAMESPACE}.{name}"


def _component_for(name: str) -> str:
    prefix = MODULE_LOGGER_NAMESPACE + "."
    if name.startswith(prefix):
        return name[len(prefix):] or DEFAULT_COMPONENT
    return name or DEFAULT_COMPONENT


def render_field(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class StructuredLogger(logging.LoggerAdapter):
    """Logger adapter that carries key/value fields through to the formatter.

    ``logger.info("backend connected", backend="sim")`` attaches ``backend``
    to the record so ``KeyValueFormatter`` can render ``backend="sim"``.
    Standard keywords such as ``exc_info`` keep their stdlib meaning.
    """

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        super().__init__(logger, {})
        self.component = component or _component_for(logger.name)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        fields: Dict[str, str] = {}
        passthrough: Dict[str, Any] = {}
        for key, value in kwargs.items():
            if key in _LOGGING_KWARGS:
                passthrough[key] = value
            else:
                fields[key] = render_field(value)
        extra = dict(passthrough.get("extra") or {})
        extra[FIELDS_ATTR] = fields
        passthrough["extra"] = extra
        return msg, passthrough

    def getChild(self, suffix: str) -> "StructuredLogger":
        return StructuredLogger(self.logger.getChild(suffix), component=f"{self.component}.{suffix}")


LoggerLike = Union[StructuredLogger, logging.Logger, logging.LoggerAdapter, None]


def ensure_structured_logger(
    logger: LoggerLike,
    *,
    component: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> StructuredLogger:
    """Accept whatever logger a caller hands in and return a StructuredLogger."""
    if isinstance(logger, StructuredLogger):
        return logger
    if isinstance(logger, logging.LoggerAdapter):
        logger = logger.logger
    if isinstance(logger, logging.Logger):
        return StructuredLogger(logger, component=component)
    return get_module_logger(fallback_name)


def get_module_logger(name: Optional[str] = None) -> StructuredLogger:
    """Return a structured logger scoped to the labops namespace."""
    return StructuredLogger(logging.getLogger(_qualified_name(name)))


__all__ = [
    "StructuredLogger",
    "LoggerLike",
    "ensure_structured_logger",
    "get_module_logger",
    "render_field",
    "set_run_id",
    "current_run_id",
]
