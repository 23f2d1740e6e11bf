"""Apply generic scenario knobs to a real backend through the node map.

Each requested knob is mapped to an SDK node, coerced to the node's type,
clamped or case-normalized where the node allows it, pushed to the backend,
and read back. Strict mode stops at the first unsupported knob; best-effort
mode records it and moves on.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from labops.backends.base import CameraBackend
from labops.backends.real_sdk.node_map import (
    InMemoryNodeMap,
    NodeValueType,
    NodeWriteError,
    NumericRange,
)
from labops.backends.real_sdk.param_key_map import ParamKeyMap
from labops.core.errors import BackendError


class ParamApplyMode(Enum):
    STRICT = "strict"
    BEST_EFFORT = "best_effort"


def parse_apply_mode(raw: Optional[str]) -> ParamApplyMode:
    normalized = (raw or "").strip().lower()
    if normalized in ("", "strict"):
        return ParamApplyMode.STRICT
    if normalized in ("best_effort", "best-effort"):
        return ParamApplyMode.BEST_EFFORT
    raise ValueError("scenario apply_mode must be one of: strict, best_effort")


@dataclass
class ApplyParamInput:
    generic_key: str
    requested_value: str


@dataclass
class AppliedParam:
    generic_key: str
    node_name: str
    requested_value: str
    applied_value: str
    adjusted: bool = False
    adjustment_reason: str = ""


@dataclass
class UnsupportedParam:
    generic_key: str
    requested_value: str
    reason: str


@dataclass
class ReadbackRow:
    generic_key: str
    requested_value: str
    node_name: Optional[str] = None
    actual_value: Optional[str] = None
    supported: bool = False
    applied: bool = False
    adjusted: bool = False
    reason: str = ""


@dataclass
class ApplyParamsResult:
    applied: List[AppliedParam] = field(default_factory=list)
    unsupported: List[UnsupportedParam] = field(default_factory=list)
    readback_rows: List[ReadbackRow] = field(default_factory=list)


class StrictApplyError(BackendError):
    """Strict mode hit an unsupported knob; ``result`` holds rows so far."""

    def __init__(self, message: str, result: ApplyParamsResult) -> None:
        super().__init__(message, operation="apply_params")
        self.result = result


@dataclass(frozen=True)
class _ParamRule:
    apply_priority: int = 10
    force_best_effort: bool = False


# ROI geometry goes first so offsets are validated against the new size.
_PARAM_RULES = {
    "roi_width": _ParamRule(apply_priority=0),
    "roi_height": _ParamRule(apply_priority=1),
    "roi_offset_x": _ParamRule(apply_priority=2),
    "roi_offset_y": _ParamRule(apply_priority=3),
    "packet_size_bytes": _ParamRule(force_best_effort=True),
    "inter_packet_delay_us": _ParamRule(force_best_effort=True),
    "frame_rate": _ParamRule(force_best_effort=True),
}
_DEFAULT_RULE = _ParamRule()

GIGE_ONLY_KEYS = frozenset({"packet_size_bytes", "inter_packet_delay_us"})


def format_compact_double(value: float) -> str:
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    if text in ("", "-0"):
        return "0"
    return text


def _format_range(rng: NumericRange) -> str:
    low = format_compact_double(rng.min) if rng.min is not None else "-inf"
    high = format_compact_double(rng.max) if rng.max is not None else "+inf"
    return f"[{low}, {high}]"


def _clamp(value: float, rng: Optional[NumericRange]) -> Tuple[float, str]:
    if rng is None:
        return value, ""
    clamped = value
    if rng.min is not None and clamped < rng.min:
        clamped = rng.min
    if rng.max is not None and clamped > rng.max:
        clamped = rng.max
    if clamped == value:
        return value, ""
    reason = (
        f"clamped from {format_compact_double(value)} to {format_compact_double(clamped)} "
        f"(allowed range {_format_range(rng)})"
    )
    return clamped, reason


def _parse_bool(raw: str) -> Optional[bool]:
    normalized = raw.strip().lower()
    if normalized in ("true", "1", "on"):
        return True
    if normalized in ("false", "0", "off"):
        return False
    return None


def _parse_int(raw: str) -> Optional[int]:
    text = raw.strip()
    body = text[1:] if text.startswith("-") else text
    if not body or not body.isdigit():
        return None
    return int(text)


def _parse_float(raw: str) -> Optional[float]:
    text = raw.strip()
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


@dataclass
class _PreparedWrite:
    backend_value: str = ""
    adjusted: bool = False
    adjustment_reason: str = ""


def _prepare_write(node_map: InMemoryNodeMap, node_name: str, requested: str) -> _PreparedWrite:
    """Coerce and write ``requested`` into the node; raises NodeWriteError."""
    node_type = node_map.get_type(node_name)
    prepared = _PreparedWrite()

    if node_type is NodeValueType.BOOL:
        parsed_bool = _parse_bool(requested)
        if parsed_bool is None:
            raise NodeWriteError("expected boolean value")
        node_map.set_bool(node_name, parsed_bool)
        prepared.backend_value = "true" if parsed_bool else "false"
        return prepared

    if node_type is NodeValueType.INT64:
        parsed_int = _parse_int(requested)
        if parsed_int is None:
            raise NodeWriteError("expected integer value")
        clamped, reason = _clamp(float(parsed_int), node_map.numeric_range(node_name))
        if reason:
            parsed_int = int(round(clamped))
            prepared.adjusted = True
            prepared.adjustment_reason = reason
        node_map.set_int(node_name, parsed_int)
        prepared.backend_value = str(parsed_int)
        return prepared

    if node_type is NodeValueType.FLOAT64:
        parsed_float = _parse_float(requested)
        if parsed_float is None:
            raise NodeWriteError("expected floating-point value")
        parsed_float, reason = _clamp(parsed_float, node_map.numeric_range(node_name))
        if reason:
            prepared.adjusted = True
            prepared.adjustment_reason = reason
        node_map.set_float(node_name, parsed_float)
        prepared.backend_value = format_compact_double(parsed_float)
        return prepared

    if node_type is NodeValueType.ENUMERATION:
        allowed = node_map.list_enum_values(node_name)
        canonical = next((value for value in allowed if value.lower() == requested.lower()), None)
        if allowed and canonical is None:
            raise NodeWriteError(
                f"value '{requested}' is not supported for key '{node_name}' "
                f"(allowed: {', '.join(allowed) or '(none)'})"
            )
        value = canonical if canonical is not None else requested
        if value != requested:
            prepared.adjusted = True
            prepared.adjustment_reason = "normalized enumeration value casing"
        node_map.set_string(node_name, value)
        prepared.backend_value = value
        return prepared

    if node_type is NodeValueType.STRING:
        node_map.set_string(node_name, requested)
        prepared.backend_value = requested
        return prepared

    raise NodeWriteError("node value type is unknown")


def _read_node_as_string(node_map: InMemoryNodeMap, node_name: str) -> str:
    node_type = node_map.get_type(node_name)
    value = node_map.get(node_name)
    if node_type is NodeValueType.BOOL:
        return "true" if value else "false"
    if node_type is NodeValueType.FLOAT64:
        return format_compact_double(float(value))
    return str(value)


def order_apply_inputs(params: Sequence[ApplyParamInput]) -> List[ApplyParamInput]:
    return sorted(params, key=lambda item: _PARAM_RULES.get(item.generic_key, _DEFAULT_RULE).apply_priority)


def _record_unsupported(
    result: ApplyParamsResult,
    generic_key: str,
    requested: str,
    node_name: Optional[str],
    supported: bool,
    reason: str,
    mode: ParamApplyMode,
) -> None:
    result.readback_rows.append(
        ReadbackRow(
            generic_key=generic_key,
            requested_value=requested,
            node_name=node_name,
            supported=supported,
            applied=False,
            reason=reason,
        )
    )
    result.unsupported.append(UnsupportedParam(generic_key, requested, reason))
    if mode is ParamApplyMode.STRICT:
        raise StrictApplyError(f"unsupported parameter '{generic_key}': {reason}", result)


def apply_params(
    backend: CameraBackend,
    key_map: ParamKeyMap,
    node_map: InMemoryNodeMap,
    params: Iterable[ApplyParamInput],
    mode: ParamApplyMode,
) -> ApplyParamsResult:
    """Apply ``params`` in rule priority order.

    Raises:
        StrictApplyError: in strict mode on the first unsupported knob.
    """
    result = ApplyParamsResult()
    for item in order_apply_inputs(list(params)):
        generic_key = item.generic_key.strip()
        if not generic_key:
            continue
        requested = item.requested_value
        rule = _PARAM_RULES.get(generic_key, _DEFAULT_RULE)
        effective_mode = ParamApplyMode.BEST_EFFORT if rule.force_best_effort else mode

        node_name = key_map.resolve(generic_key)
        if node_name is None:
            _record_unsupported(
                result, generic_key, requested, None, False,
                "no generic->node mapping was found", effective_mode,
            )
            continue
        if not node_map.has(node_name):
            _record_unsupported(
                result, generic_key, requested, node_name, False,
                f"mapped SDK node '{node_name}' is not available", effective_mode,
            )
            continue

        try:
            prepared = _prepare_write(node_map, node_name, requested)
        except NodeWriteError as exc:
            _record_unsupported(result, generic_key, requested, node_name, True, str(exc), effective_mode)
            continue

        try:
            backend.set_param(node_name, prepared.backend_value)
        except BackendError as exc:
            _record_unsupported(
                result, generic_key, requested, node_name, True,
                f"backend rejected mapped value: {str(exc) or 'unknown error'}", effective_mode,
            )
            continue

        result.readback_rows.append(
            ReadbackRow(
                generic_key=generic_key,
                requested_value=requested,
                node_name=node_name,
                actual_value=_read_node_as_string(node_map, node_name),
                supported=True,
                applied=True,
                adjusted=prepared.adjusted,
                reason=prepared.adjustment_reason,
            )
        )
        result.applied.append(
            AppliedParam(
                generic_key=generic_key,
                node_name=node_name,
                requested_value=requested,
                applied_value=prepared.backend_value,
                adjusted=prepared.adjusted,
                adjustment_reason=prepared.adjustment_reason,
            )
        )
    return result


def split_transport_tuning(
    params: Sequence[ApplyParamInput], transport: str
) -> Tuple[List[ApplyParamInput], List[ApplyParamInput]]:
    """Separate GigE-only knobs when the resolved transport is not GigE."""
    if transport.lower() == "gige":
        return list(params), []
    kept = [item for item in params if item.generic_key not in GIGE_ONLY_KEYS]
    skipped = [item for item in params if item.generic_key in GIGE_ONLY_KEYS]
    return kept, skipped


def append_skipped_transport_rows(
    result: ApplyParamsResult, skipped: Sequence[ApplyParamInput], transport: str
) -> None:
    reason = f"setting requires GigE transport (resolved transport: {transport})"
    for item in skipped:
        result.unsupported.append(UnsupportedParam(item.generic_key, item.requested_value, reason))
        result.readback_rows.append(
            ReadbackRow(generic_key=item.generic_key, requested_value=item.requested_value, reason=reason)
        )


__all__ = [
    "ApplyParamInput",
    "ApplyParamsResult",
    "AppliedParam",
    "ParamApplyMode",
    "ReadbackRow",
    "StrictApplyError",
    "UnsupportedParam",
    "append_skipped_transport_rows",
    "apply_params",
    "format_compact_double",
    "order_apply_inputs",
    "parse_apply_mode",
    "split_transport_tuning",
]
