"""Stable classification of raw real-backend failure text."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class RealErrorCode(Enum):
    SDK_UNAVAILABLE = "REAL_SDK_UNAVAILABLE"
    ACCESS_DENIED = "REAL_ACCESS_DENIED"
    DEVICE_DISCONNECTED = "REAL_DEVICE_DISCONNECTED"
    TIMEOUT = "REAL_TIMEOUT"
    DEVICE_BUSY = "REAL_DEVICE_BUSY"
    DEVICE_NOT_FOUND = "REAL_DEVICE_NOT_FOUND"
    STATE_CONFLICT = "REAL_STATE_CONFLICT"
    INVALID_CONFIGURATION = "REAL_INVALID_CONFIGURATION"
    UNKNOWN = "REAL_UNKNOWN_ERROR"


# First match wins; detail text often satisfies more than one row.
_KEYWORD_TABLE: Tuple[Tuple[RealErrorCode, Tuple[str, ...]], ...] = (
    (RealErrorCode.SDK_UNAVAILABLE, (
        "disabled at build time", "sdk missing", "sdk not found",
        "no proprietary sdk adapter", "failed to initialize sdk",
    )),
    (RealErrorCode.ACCESS_DENIED, ("permission denied", "access denied", "unauthorized")),
    (RealErrorCode.DEVICE_DISCONNECTED, (
        "disconnect", "connection lost", "link down", "unplug", "device unavailable",
    )),
    (RealErrorCode.TIMEOUT, ("timeout", "timed out", "deadline exceeded")),
    (RealErrorCode.DEVICE_BUSY, ("busy", "in use", "already open", "resource locked")),
    (RealErrorCode.DEVICE_NOT_FOUND, (
        "no connected", "no camera", "not found", "matched selector", "out of range",
    )),
    (RealErrorCode.STATE_CONFLICT, (
        "already connected", "already running", "not running",
        "before a successful connect", "stream is stopped",
    )),
    (RealErrorCode.INVALID_CONFIGURATION, (
        "parse error", "invalid", "out of range", "type mismatch", "cannot be empty", "must be",
    )),
)


@dataclass(frozen=True)
class RealFailureDetails:
    code: RealErrorCode
    actionable_message: str
    detail: str

    @property
    def stable_code(self) -> str:
        return self.code.value

    @property
    def formatted_message(self) -> str:
        text = f"{self.code.value}: {self.actionable_message}"
        if self.detail:
            text += f" detail: {self.detail}"
        return text


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def classify_detail(detail: str) -> RealErrorCode:
    normalized = collapse_whitespace(detail).lower()
    if not normalized:
        return RealErrorCode.UNKNOWN
    for code, needles in _KEYWORD_TABLE:
        if any(needle in normalized for needle in needles):
            return code
    return RealErrorCode.UNKNOWN


def build_actionable_message(code: RealErrorCode, operation: str) -> str:
    op = operation or "requested operation"
    if code is RealErrorCode.DEVICE_BUSY:
        return f"Device is busy during {op}; close other camera tools/processes and retry."
    if code is RealErrorCode.TIMEOUT:
        return f"Camera timed out during {op}; check trigger/network conditions and timeout settings."
    if code is RealErrorCode.ACCESS_DENIED:
        return f"Access denied during {op}; verify OS permissions and SDK access rights."
    if code is RealErrorCode.DEVICE_NOT_FOUND:
        return f"Camera was not found during {op}; verify power/cable and serial or user_id selector."
    if code is RealErrorCode.DEVICE_DISCONNECTED:
        return f"Camera disconnected during {op}; check cable/NIC stability and retry."
    if code is RealErrorCode.SDK_UNAVAILABLE:
        return "Real SDK is unavailable; install/enable the vendor SDK and set LABOPS_REAL_BACKEND=1."
    if code is RealErrorCode.INVALID_CONFIGURATION:
        return "Configuration is invalid for this camera; review scenario values and supported ranges."
    if code is RealErrorCode.STATE_CONFLICT:
        return (
            f"Backend state conflict during {op}; "
            "verify connect/start/stop ordering and active session state."
        )
    return f"Unexpected real-backend failure during {op}; inspect sdk_log.txt and vendor diagnostics."


def map_real_failure(operation: str, raw_detail: str) -> RealFailureDetails:
    detail = collapse_whitespace(raw_detail or "")
    code = classify_detail(detail)
    return RealFailureDetails(code, build_actionable_message(code, operation), detail)


def format_real_failure(operation: str, raw_detail: str) -> str:
    return map_real_failure(operation, raw_detail).formatted_message


__all__ = [
    "RealErrorCode",
    "RealFailureDetails",
    "classify_detail",
    "collapse_whitespace",
    "format_real_failure",
    "map_real_failure",
]
