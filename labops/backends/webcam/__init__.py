"""OpenCV-backed webcam backend and device selection."""

from .backend import WebcamBackend, probe_platform
from .device_selector import (
    SelectionRule,
    WebcamDeviceInfo,
    WebcamDeviceSelector,
    WebcamSelection,
    enumerate_webcam_devices,
    parse_webcam_selector,
    resolve_webcam_selector,
)

__all__ = [
    "SelectionRule",
    "WebcamBackend",
    "WebcamDeviceInfo",
    "WebcamDeviceSelector",
    "WebcamSelection",
    "enumerate_webcam_devices",
    "parse_webcam_selector",
    "probe_platform",
    "resolve_webcam_selector",
]
