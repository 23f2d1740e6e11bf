"""Real camera discovery and ``serial``/``user_id``/``index`` selectors."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from labops.backends.real_sdk.availability import is_real_backend_enabled, real_backend_status
from labops.backends.real_sdk.sdk_context import SdkContext
from labops.core.errors import BackendError, BackendNotAvailableError, SelectorError

REAL_DEVICE_FIXTURE_ENV = "LABOPS_REAL_DEVICE_FIXTURE"


@dataclass
class RealDeviceInfo:
    model: str
    serial: str
    user_id: str = ""
    transport: str = "unknown"
    ip_address: Optional[str] = None
    mac_address: Optional[str] = None
    firmware_version: Optional[str] = None
    sdk_version: Optional[str] = None


@dataclass
class DeviceSelector:
    serial: Optional[str] = None
    user_id: Optional[str] = None
    index: Optional[int] = None


# ---------------------------------------------------------------------------
# Fixture parsing


def split_csv_line(line: str) -> List[str]:
    return [field.strip() for field in line.split(",")]


def _optional(value: str) -> Optional[str]:
    value = value.strip()
    return value or None


def normalize_transport(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized:
        return "unknown"
    if normalized in ("gige", "gig e", "gigabit_ethernet"):
        return "gige"
    if normalized in ("usb", "usb3", "usb3vision"):
        return "usb"
    if normalized in ("cxp", "coaxpress"):
        return "cxp"
    return normalized


def normalize_mac(value: str) -> Optional[str]:
    normalized = _optional(value)
    if normalized is None:
        return None
    return normalized.replace("-", ":").upper()


def _is_header(fields: List[str]) -> bool:
    return (
        fields[0].lower() == "model"
        and fields[1].lower() == "serial"
        and fields[3].lower() == "transport"
    )


def parse_device_fixture(text: str) -> List[RealDeviceInfo]:
    devices: List[RealDeviceInfo] = []
    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        fields = split_csv_line(line)
        if len(fields) < 4:
            raise BackendError(
                f"device fixture parse error at line {line_number}: expected at least 4 CSV "
                "fields (model,serial,user_id,transport)"
            )
        if _is_header(fields):
            continue
        fields += [""] * (8 - len(fields))
        devices.append(
            RealDeviceInfo(
                model=fields[0] or "unknown_model",
                serial=fields[1] or "unknown_serial",
                user_id=fields[2],
                transport=normalize_transport(fields[3]),
                ip_address=_optional(fields[4]),
                mac_address=normalize_mac(fields[5]),
                firmware_version=_optional(fields[6]),
                sdk_version=_optional(fields[7]),
            )
        )
    return devices


def load_device_fixture(path: Path) -> List[RealDeviceInfo]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise BackendError(f"unable to open {REAL_DEVICE_FIXTURE_ENV} file: {path}") from e
    return parse_device_fixture(text)


def enumerate_connected_devices() -> List[RealDeviceInfo]:
    """List real cameras visible to the SDK.

    No vendor SDK is linked, so discovery reads the descriptor CSV named by
    ``LABOPS_REAL_DEVICE_FIXTURE``; without it the list is empty.
    """
    if not is_real_backend_enabled():
        raise BackendNotAvailableError(f"real backend {real_backend_status()}", operation="enumerate")
    with SdkContext():
        fixture = os.environ.get(REAL_DEVICE_FIXTURE_ENV, "")
        if not fixture:
            return []
        return load_device_fixture(Path(fixture))


# ---------------------------------------------------------------------------
# Selector grammar


def split_selector_clauses(text: str) -> List[Tuple[str, str]]:
    """Split ``key:value,...`` into trimmed ``(lower_key, value)`` pairs."""
    if not text.strip():
        raise SelectorError("selector cannot be empty")
    clauses: List[Tuple[str, str]] = []
    for raw_clause in text.split(","):
        clause = raw_clause.strip()
        if not clause:
            raise SelectorError("selector contains an empty clause")
        key, sep, value = clause.partition(":")
        if not sep or not key.strip():
            raise SelectorError(f"selector clause '{clause}' must use key:value format")
        value = value.strip()
        if not value:
            raise SelectorError(
                f"selector clause '{clause}' must provide a non-empty value (missing a value)"
            )
        clauses.append((key.strip().lower(), value))
    return clauses


def parse_selector_index(value: str, message: str = "selector index must be a non-negative integer") -> int:
    if not value.isdigit():
        raise SelectorError(message)
    return int(value)


def parse_device_selector(text: str) -> DeviceSelector:
    selector = DeviceSelector()
    for key, value in split_selector_clauses(text):
        if key in ("serial", "user_id", "index"):
            if getattr(selector, key) is not None:
                raise SelectorError(f"selector contains duplicate {key} key")
            setattr(selector, key, parse_selector_index(value) if key == "index" else value)
            continue
        raise SelectorError(f"selector key '{key}' is not supported (allowed: serial, user_id, index)")

    if selector.serial is not None and selector.user_id is not None:
        raise SelectorError("selector cannot include both serial and user_id")
    if selector.serial is None and selector.user_id is None and selector.index is None:
        raise SelectorError("selector must include serial:<value>, user_id:<value>, or index:<n>")
    return selector


def resolve_device_selector(
    devices: List[RealDeviceInfo], selector: DeviceSelector
) -> Tuple[RealDeviceInfo, int]:
    """Return ``(device, discovered_index)`` for ``selector``."""
    if not devices:
        raise SelectorError("no connected cameras were discovered")

    candidates = [
        i for i, device in enumerate(devices)
        if (selector.serial is None or device.serial == selector.serial)
        and (selector.user_id is None or device.user_id == selector.user_id)
    ]
    if not candidates:
        if selector.serial is not None:
            raise SelectorError(f"no device matched selector serial:{selector.serial}")
        if selector.user_id is not None:
            raise SelectorError(f"no device matched selector user_id:{selector.user_id}")
        raise SelectorError("no candidate devices available for index selector")

    if selector.index is not None:
        if selector.index >= len(candidates):
            raise SelectorError(
                f"selector index {selector.index} is out of range for "
                f"{len(candidates)} candidate device(s)"
            )
        chosen = candidates[selector.index]
        return devices[chosen], chosen

    if len(candidates) > 1:
        raise SelectorError(
            f"selector matched multiple devices ({len(candidates)}); add index:<n> to disambiguate"
        )
    return devices[candidates[0]], candidates[0]


def resolve_connected_device(selector_text: str) -> Tuple[RealDeviceInfo, int]:
    selector = parse_device_selector(selector_text)
    return resolve_device_selector(enumerate_connected_devices(), selector)


__all__ = [
    "DeviceSelector",
    "RealDeviceInfo",
    "REAL_DEVICE_FIXTURE_ENV",
    "enumerate_connected_devices",
    "load_device_fixture",
    "normalize_mac",
    "normalize_transport",
    "parse_device_fixture",
    "parse_device_selector",
    "resolve_connected_device",
    "resolve_device_selector",
    "split_csv_line",
    "split_selector_clauses",
]
