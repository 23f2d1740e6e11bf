"""Webcam backend on top of OpenCV ``VideoCapture``.

Requested width/height/fps/fourcc are pushed after open and read back; the
driver's answer is recorded as readback rows and exposed through
``dump_config`` under ``webcam.readback.*``, ``webcam.adjusted.*`` and
``webcam.unsupported.*``.
"""

from __future__ import annotations

import math
import platform
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import cv2

from labops.backends.base import BackendConfig, CameraBackend, FrameSample
from labops.backends.real_sdk.apply_params import ReadbackRow
from labops.backends.webcam.device_selector import open_capture
from labops.core.errors import BackendError, BackendNotAvailableError
from labops.core.logging_utils import get_module_logger
from labops.core.time_utils import CaptureClock

logger = get_module_logger("WebcamBackend")

READ_TIMEOUT_BUDGET_S = 0.200
READ_FAILURE_BACKOFF_S = 0.005

_PROPERTIES = (
    # (generic key, requested param, OpenCV property, node label)
    ("width", "webcam.requested_width", cv2.CAP_PROP_FRAME_WIDTH, "OpenCV.CAP_PROP_FRAME_WIDTH"),
    ("height", "webcam.requested_height", cv2.CAP_PROP_FRAME_HEIGHT, "OpenCV.CAP_PROP_FRAME_HEIGHT"),
    ("fps", "webcam.requested_fps", cv2.CAP_PROP_FPS, "OpenCV.CAP_PROP_FPS"),
)


@dataclass
class PlatformAvailability:
    platform_name: str
    available: bool
    reason: str


def probe_platform() -> PlatformAvailability:
    system = platform.system().lower()
    if system == "linux":
        return PlatformAvailability("linux", True, "linux V4L2 via OpenCV")
    if system == "darwin":
        return PlatformAvailability("macos", True, "AVFoundation via OpenCV")
    if system == "windows":
        return PlatformAvailability("windows", True, "MSMF/DirectShow via OpenCV")
    return PlatformAvailability(system or "unknown", False, "unsupported operating system")


def format_double(value: float) -> str:
    return f"{value:.6f}"


def encode_fourcc(code: str) -> int:
    return cv2.VideoWriter_fourcc(*code)


def decode_fourcc(value: float) -> str:
    raw = int(value)
    return "".join(chr((raw >> (8 * i)) & 0xFF) for i in range(4))


@dataclass
class _Adjusted:
    key: str
    requested: str
    actual: str
    reason: str


@dataclass
class _Unsupported:
    key: str
    requested: str
    reason: str


class WebcamBackend(CameraBackend):
    name = "webcam"

    def __init__(
        self,
        *,
        capture_factory: Optional[Callable[[int], object]] = None,
        clock: Optional[CaptureClock] = None,
    ) -> None:
        self._open_capture = capture_factory or open_capture
        self._clock = clock or CaptureClock.reset_to_now()
        self._platform = probe_platform()
        self._cap = None
        self._connected = False
        self._running = False
        self._next_frame_id = 0
        self._requested: Dict[str, object] = {}
        self._readback: List[ReadbackRow] = []
        self._adjusted: List[_Adjusted] = []
        self._unsupported: List[_Unsupported] = []
        self._params: Dict[str, str] = {
            "backend": "webcam",
            "platform": self._platform.platform_name,
            "platform_available": "true" if self._platform.available else "false",
            "platform_reason": self._platform.reason,
            "opencv_version": getattr(cv2, "__version__", "unknown"),
            "capability.exposure": "unsupported",
            "capability.gain": "unsupported",
            "capability.pixel_format": "best_effort",
            "capability.roi": "unsupported",
            "capability.trigger": "unsupported",
            "capability.frame_rate": "best_effort",
            # selectorless runs still target index 0
            "device.index": "0",
        }

    def _not_available(self) -> BackendNotAvailableError:
        return BackendNotAvailableError(
            f"BACKEND_NOT_AVAILABLE: webcam backend on {self._platform.platform_name} "
            f"is not ready: {self._platform.reason}",
            operation="connect",
        )

    def _clear_session_snapshot(self) -> None:
        self._readback.clear()
        self._adjusted.clear()
        self._unsupported.clear()
        for key in [k for k in self._params if k.startswith("webcam.actual_")]:
            del self._params[key]

    # ------------------------------------------------------------------
    # Lifecycle

    def connect(self) -> None:
        if self._connected:
            raise BackendError("webcam backend is already connected", operation="connect")
        if not self._platform.available:
            raise self._not_available()
        index_text = self._params.get("device.index", "0")
        if not index_text.isdigit():
            raise BackendError("device.index must be a non-negative integer", operation="connect")
        index = int(index_text)
        self._clear_session_snapshot()

        cap = self._open_capture(index)
        if cap is None:
            raise BackendError(
                f"BACKEND_CONNECT_FAILED: OpenCV could not open webcam index {index}",
                operation="connect",
            )
        self._cap = cap
        self._connected = True
        self._next_frame_id = 0
        self._params["device.opened_index"] = str(index)
        self._apply_requested_config()
        logger.debug("webcam opened", index=index)

    def start(self) -> None:
        if not self._connected:
            raise BackendError("webcam backend must be connected before start", operation="start")
        if self._running:
            raise BackendError("webcam backend is already running", operation="start")
        if not self._platform.available:
            raise self._not_available()
        if self._cap is None or not self._cap.isOpened():
            raise BackendError("webcam backend has no open capture session", operation="start")
        self._running = True

    def stop(self) -> None:
        if not self._running:
            raise BackendError("webcam backend is not running", operation="stop")
        self._running = False
        self.close()

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self._connected = False
        self._running = False

    # ------------------------------------------------------------------
    # Parameters

    def set_param(self, key: str, value: str) -> None:
        if not key:
            raise BackendError("parameter key cannot be empty", operation="set_param")
        if value == "":
            raise BackendError("parameter value cannot be empty", operation="set_param")

        if key == "device.index":
            if not value.isdigit():
                raise BackendError("device.index must be a non-negative integer", operation="set_param")
            self._params[key] = str(int(value))
            return

        if key in ("webcam.requested_width", "webcam.requested_height"):
            if not value.isdigit() or int(value) == 0 or int(value) > 0xFFFFFFFF:
                raise BackendError(f"{key} must be a positive integer", operation="set_param")
            self._requested[key] = int(value)
            self._params[key] = str(int(value))
            return

        if key == "webcam.requested_fps":
            try:
                parsed = float(value)
            except ValueError:
                parsed = float("nan")
            if not math.isfinite(parsed) or parsed <= 0.0:
                raise BackendError("webcam.requested_fps must be a positive number", operation="set_param")
            self._requested[key] = parsed
            self._params[key] = format_double(parsed)
            return

        if key == "webcam.requested_pixel_format":
            if len(value) != 4:
                raise BackendError(
                    "webcam.requested_pixel_format must be exactly 4 characters (example: MJPG)",
                    operation="set_param",
                )
            self._requested[key] = value.upper()
            self._params[key] = value.upper()
            return

        self._params[key] = value

    def _record_failure(self, generic_key: str, param_key: str, node: str, requested: str,
                        actual: str, reason: str) -> None:
        self._unsupported.append(_Unsupported(param_key, requested, reason))
        self._readback.append(
            ReadbackRow(generic_key=generic_key, requested_value=requested, node_name=node,
                        actual_value=actual or None, supported=False, applied=False, reason=reason)
        )

    def _apply_requested_config(self) -> None:
        cap = self._cap
        for generic_key, param_key, prop, node in _PROPERTIES:
            if param_key not in self._requested:
                continue
            requested = float(self._requested[param_key])
            requested_text = format_double(requested)
            set_ok = bool(cap.set(prop, requested))
            actual = float(cap.get(prop) or 0.0)
            read_ok = math.isfinite(actual) and actual > 0.0
            if read_ok:
                self._params[f"webcam.actual_{generic_key}"] = format_double(actual)

            if set_ok and read_ok:
                adjusted = abs(actual - requested) > 1e-3
                reason = "driver adjusted to nearest supported value" if adjusted else ""
                self._readback.append(
                    ReadbackRow(generic_key=generic_key, requested_value=requested_text, node_name=node,
                                actual_value=format_double(actual), supported=True, applied=True,
                                adjusted=adjusted, reason=reason)
                )
                if adjusted:
                    self._adjusted.append(_Adjusted(param_key, requested_text, format_double(actual), reason))
                continue

            set_error = f"OpenCV rejected property set for {generic_key}"
            read_error = f"OpenCV returned an unreadable value for property {generic_key}"
            if not set_ok and not read_ok:
                reason = f"{set_error}; {read_error}"
            elif not set_ok:
                reason = set_error
            else:
                reason = f"OpenCV cannot confirm applied value: {read_error}"
            self._record_failure(
                generic_key, param_key, node, requested_text,
                format_double(actual) if read_ok else "", reason,
            )

        fourcc = self._requested.get("webcam.requested_pixel_format")
        if fourcc is None:
            return
        requested_text = str(fourcc)
        node = "OpenCV.CAP_PROP_FOURCC"
        set_ok = bool(cap.set(cv2.CAP_PROP_FOURCC, encode_fourcc(requested_text)))
        raw = float(cap.get(cv2.CAP_PROP_FOURCC) or 0.0)
        read_ok = math.isfinite(raw) and raw > 0.0
        actual = decode_fourcc(raw) if read_ok else ""
        if read_ok:
            self._params["webcam.actual_pixel_format"] = actual
        if set_ok and read_ok:
            adjusted = actual != requested_text
            reason = "driver adjusted pixel format" if adjusted else ""
            self._readback.append(
                ReadbackRow(generic_key="pixel_format", requested_value=requested_text, node_name=node,
                            actual_value=actual, supported=True, applied=True, adjusted=adjusted,
                            reason=reason)
            )
            if adjusted:
                self._adjusted.append(
                    _Adjusted("webcam.requested_pixel_format", requested_text, actual, reason)
                )
            return
        set_error = f"OpenCV rejected pixel format request '{requested_text}'"
        read_error = "OpenCV could not read back a valid fourcc value"
        if not set_ok and not read_ok:
            reason = f"{set_error}; {read_error}"
        elif not set_ok:
            reason = set_error
        else:
            reason = f"OpenCV cannot confirm applied value: {read_error}"
        self._record_failure("pixel_format", "webcam.requested_pixel_format", node,
                             requested_text, actual, reason)

    @property
    def readback_rows(self) -> List[ReadbackRow]:
        return list(self._readback)

    def dump_config(self) -> BackendConfig:
        config = dict(self._params)
        config["connected"] = "true" if self._connected else "false"
        config["running"] = "true" if self._running else "false"

        config["webcam.readback.count"] = str(len(self._readback))
        for i, row in enumerate(self._readback):
            prefix = f"webcam.readback.{i}"
            config[f"{prefix}.generic_key"] = row.generic_key
            config[f"{prefix}.node_name"] = row.node_name or ""
            config[f"{prefix}.requested"] = row.requested_value
            config[f"{prefix}.actual"] = row.actual_value or ""
            config[f"{prefix}.supported"] = "true" if row.supported else "false"
            config[f"{prefix}.applied"] = "true" if row.applied else "false"
            config[f"{prefix}.adjusted"] = "true" if row.adjusted else "false"
            config[f"{prefix}.reason"] = row.reason

        config["webcam.unsupported.count"] = str(len(self._unsupported))
        for i, item in enumerate(self._unsupported):
            prefix = f"webcam.unsupported.{i}"
            config[f"{prefix}.key"] = item.key
            config[f"{prefix}.requested"] = item.requested
            config[f"{prefix}.reason"] = item.reason

        config["webcam.adjusted.count"] = str(len(self._adjusted))
        for i, item in enumerate(self._adjusted):
            prefix = f"webcam.adjusted.{i}"
            config[f"{prefix}.key"] = item.key
            config[f"{prefix}.requested"] = item.requested
            config[f"{prefix}.actual"] = item.actual
            config[f"{prefix}.reason"] = item.reason
        return config

    # ------------------------------------------------------------------
    # Acquisition

    def pull_frames(self, duration_ms: int) -> List[FrameSample]:
        if duration_ms < 0:
            raise BackendError("pull_frames duration cannot be negative", operation="pull_frames")
        if not self._connected:
            raise BackendError("webcam backend must be connected before pull_frames", operation="pull_frames")
        if not self._running:
            raise BackendError("webcam backend must be running before pull_frames", operation="pull_frames")
        if duration_ms == 0:
            return []

        frames: List[FrameSample] = []
        deadline_ns = time.monotonic_ns() + duration_ms * 1_000_000
        while time.monotonic_ns() < deadline_ns:
            read_started_ns = time.monotonic_ns()
            ok, frame = self._cap.read()
            read_done_ns = time.monotonic_ns()
            read_elapsed = (read_done_ns - read_started_ns) / 1e9
            frame_id = self._next_frame_id
            self._next_frame_id += 1
            timestamp = self._clock.to_wall(read_done_ns)

            if not ok:
                if read_elapsed >= READ_TIMEOUT_BUDGET_S:
                    frames.append(FrameSample.timed_out(frame_id, timestamp))
                else:
                    frames.append(FrameSample.incomplete(frame_id, timestamp))
                time.sleep(READ_FAILURE_BACKOFF_S)
                continue
            if frame is None or frame.size == 0:
                frames.append(FrameSample.incomplete(frame_id, timestamp))
                time.sleep(READ_FAILURE_BACKOFF_S)
                continue
            frames.append(FrameSample.received(frame_id, timestamp, min(int(frame.nbytes), 0xFFFFFFFF)))
        return frames


__all__ = [
    "PlatformAvailability",
    "WebcamBackend",
    "decode_fourcc",
    "probe_platform",
]
