"""Webcam discovery and ``id``/``index``/``name_contains`` selectors."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import cv2

from labops.backends.real_sdk.device_discovery import (
    parse_selector_index,
    split_csv_line,
    split_selector_clauses,
)
from labops.core.errors import BackendError, SelectorError
from labops.core.logging_utils import LoggerLike, ensure_structured_logger

WEBCAM_DEVICE_FIXTURE_ENV = "LABOPS_WEBCAM_DEVICE_FIXTURE"
WEBCAM_MAX_PROBE_INDEX_ENV = "LABOPS_WEBCAM_MAX_PROBE_INDEX"
DEFAULT_PROBE_LIMIT = 8


class SelectionRule(Enum):
    ID = "id"
    INDEX = "index"
    NAME_CONTAINS = "name_contains"
    DEFAULT_DEVICE = "default_index_0"


@dataclass
class WebcamDeviceInfo:
    device_id: str
    friendly_name: str
    bus_info: Optional[str] = None
    capture_index: Optional[int] = None


@dataclass
class WebcamDeviceSelector:
    id: Optional[str] = None
    index: Optional[int] = None
    name_contains: Optional[str] = None

    def to_text(self) -> str:
        if self.id is not None:
            return f"id:{self.id}"
        if self.index is not None:
            return f"index:{self.index}"
        if self.name_contains is not None:
            return f"name_contains:{self.name_contains}"
        return ""


@dataclass
class WebcamSelection:
    device: WebcamDeviceInfo
    index: int
    rule: SelectionRule


def parse_webcam_selector(text: str) -> WebcamDeviceSelector:
    selector = WebcamDeviceSelector()
    for key, value in split_selector_clauses(text):
        if key not in ("id", "index", "name_contains"):
            raise SelectorError(
                f"selector key '{key}' is not supported (allowed: id, index, name_contains)"
            )
        if getattr(selector, key) is not None:
            raise SelectorError(f"selector contains duplicate {key} key")
        setattr(selector, key, parse_selector_index(value) if key == "index" else value)

    if selector.id is None and selector.index is None and selector.name_contains is None:
        raise SelectorError("selector must include id:<value>, index:<n>, or name_contains:<substring>")
    return selector


def _sort_key(device: WebcamDeviceInfo) -> Tuple[int, str, str, str]:
    index = device.capture_index if device.capture_index is not None else -1
    return (index, device.device_id, device.friendly_name, device.bus_info or "")


def sort_devices(devices: List[WebcamDeviceInfo]) -> List[WebcamDeviceInfo]:
    """Stable order: capture index, then id, name and bus info."""
    return sorted(devices, key=_sort_key)


# ---------------------------------------------------------------------------
# Discovery


def parse_webcam_fixture(text: str) -> List[WebcamDeviceInfo]:
    devices: List[WebcamDeviceInfo] = []
    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        fields = split_csv_line(line)
        if len(fields) < 2:
            raise BackendError(
                f"webcam fixture parse error at line {line_number}: expected at least 2 CSV "
                "fields (device_id,friendly_name)"
            )
        if fields[0].lower() == "device_id" and fields[1].lower() == "friendly_name":
            continue

        capture_index: Optional[int] = None
        if len(fields) >= 4 and fields[3]:
            if not fields[3].isdigit():
                raise BackendError(
                    f"webcam fixture parse error at line {line_number}: "
                    "capture_index must be a non-negative integer"
                )
            capture_index = int(fields[3])
        if not fields[0]:
            raise BackendError(
                f"webcam fixture parse error at line {line_number}: device_id must be non-empty"
            )
        if not fields[1]:
            raise BackendError(
                f"webcam fixture parse error at line {line_number}: friendly_name must be non-empty"
            )
        bus_info = fields[2] if len(fields) >= 3 and fields[2] else None
        devices.append(WebcamDeviceInfo(fields[0], fields[1], bus_info, capture_index))
    return devices


def resolve_probe_limit() -> int:
    raw = os.environ.get(WEBCAM_MAX_PROBE_INDEX_ENV, "")
    if not raw.isdigit():
        return DEFAULT_PROBE_LIMIT
    return int(raw)


def open_capture(index: int):
    """Open ``index`` preferring V4L2, falling back to the OpenCV default."""
    backends = []
    v4l2 = getattr(cv2, "CAP_V4L2", None)
    if v4l2 is not None:
        backends.append(v4l2)
    backends.append(cv2.CAP_ANY)

    for backend in backends:
        cap = cv2.VideoCapture(index, backend)
        if cap is not None and cap.isOpened():
            return cap
        if cap is not None:
            cap.release()
    return None


def _read_sysfs_name(index: int) -> Optional[str]:
    sys_name = Path(f"/sys/class/video4linux/video{index}/name")
    try:
        text = sys_name.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return text or None


def probe_opencv_devices(
    max_probe_index: int,
    *,
    opener: Optional[Callable[[int], object]] = None,
    logger: LoggerLike = None,
) -> List[WebcamDeviceInfo]:
    log = ensure_structured_logger(logger, fallback_name=__name__)
    open_fn = opener or open_capture
    devices: List[WebcamDeviceInfo] = []
    for index in range(max_probe_index + 1):
        cap = open_fn(index)
        if cap is None:
            continue
        cap.release()
        devices.append(
            WebcamDeviceInfo(
                device_id=f"opencv-index-{index}",
                friendly_name=_read_sysfs_name(index) or f"OpenCV Camera {index}",
                bus_info=f"opencv:index:{index}",
                capture_index=index,
            )
        )
    log.debug("webcam probe finished", max_probe_index=max_probe_index, discovered=len(devices))
    return devices


def enumerate_webcam_devices(*, logger: LoggerLike = None) -> List[WebcamDeviceInfo]:
    """Fixture CSV when ``LABOPS_WEBCAM_DEVICE_FIXTURE`` is set, else OpenCV probing."""
    fixture = os.environ.get(WEBCAM_DEVICE_FIXTURE_ENV, "")
    if fixture:
        try:
            text = Path(fixture).read_text(encoding="utf-8")
        except OSError as e:
            raise BackendError(f"unable to open {WEBCAM_DEVICE_FIXTURE_ENV} file: {fixture}") from e
        devices = parse_webcam_fixture(text)
    else:
        devices = probe_opencv_devices(resolve_probe_limit(), logger=logger)
    return sort_devices(devices)


def resolve_webcam_selector(
    devices: List[WebcamDeviceInfo], selector: WebcamDeviceSelector
) -> WebcamSelection:
    if not devices:
        raise SelectorError("no webcam devices were discovered")
    ordered = sort_devices(devices)

    if selector.id is not None:
        for i, device in enumerate(ordered):
            if device.device_id == selector.id:
                return WebcamSelection(device, i, SelectionRule.ID)
        raise SelectorError(f"no webcam device matched selector id:{selector.id}")

    if selector.index is not None:
        if selector.index >= len(ordered):
            raise SelectorError(
                f"webcam selector index {selector.index} is out of range for "
                f"{len(ordered)} discovered device(s)"
            )
        return WebcamSelection(ordered[selector.index], selector.index, SelectionRule.INDEX)

    if selector.name_contains is not None:
        needle = selector.name_contains.lower()
        for i, device in enumerate(ordered):
            if needle in device.friendly_name.lower():
                return WebcamSelection(device, i, SelectionRule.NAME_CONTAINS)
        raise SelectorError(
            f"no webcam device matched selector name_contains:{selector.name_contains}"
        )

    return WebcamSelection(ordered[0], 0, SelectionRule.DEFAULT_DEVICE)


__all__ = [
    "SelectionRule",
    "WebcamDeviceInfo",
    "WebcamDeviceSelector",
    "WebcamSelection",
    "WEBCAM_DEVICE_FIXTURE_ENV",
    "enumerate_webcam_devices",
    "open_capture",
    "parse_webcam_fixture",
    "parse_webcam_selector",
    "probe_opencv_devices",
    "resolve_probe_limit",
    "resolve_webcam_selector",
    "sort_devices",
]
