"""Placeholder backend used when no vendor SDK adapter is available."""

from __future__ import annotations

from typing import Dict, List

from labops.backends.base import BackendConfig, CameraBackend, FrameSample
from labops.backends.real_sdk.availability import is_real_backend_enabled
from labops.backends.real_sdk.real_backend import SDK_LOG_PARAM, SdkLogCapture
from labops.core.errors import BackendError, BackendNotAvailableError


def build_connection_error() -> str:
    if is_real_backend_enabled():
        return "real backend path is enabled, but no proprietary SDK adapter is linked in this repository"
    return "real backend path is disabled at build time (set LABOPS_REAL_BACKEND=1 to enable the stub path)"


class RealCameraBackendStub(CameraBackend):
    """Accepts parameters for diagnostics; every stream operation fails."""

    name = "real_stub"

    def __init__(self) -> None:
        self._connected = False
        self._running = False
        self._sdk_log = SdkLogCapture("real_stub")
        self._params: Dict[str, str] = {
            "backend": "real_stub",
            "sdk_adapter": "not_integrated",
            "build_real_backend_enabled": "true" if is_real_backend_enabled() else "false",
        }

    def _fail(self, message: str, operation: str, reason: str) -> BackendError:
        self._sdk_log.append(f"{operation} status=error reason={reason}")
        return BackendError(message, operation=operation)

    def connect(self) -> None:
        if self._connected:
            raise self._fail("real backend stub is already connected", "connect", "already_connected")
        message = build_connection_error()
        self._sdk_log.append(f"connect status=error reason={message}")
        if not is_real_backend_enabled():
            raise BackendNotAvailableError(message, operation="connect")
        raise BackendError(message, operation="connect")

    def start(self) -> None:
        if not self._connected:
            raise self._fail("real backend stub cannot start before a successful connect", "start", "not_connected")
        if self._running:
            raise self._fail("real backend stub is already running", "start", "already_running")
        raise self._fail(
            "real backend stub cannot start stream because SDK adapter is not implemented",
            "start",
            "sdk_not_implemented",
        )

    def stop(self) -> None:
        if not self._running:
            raise self._fail("real backend stub is not running", "stop", "not_running")
        raise self._fail(
            "real backend stub cannot stop stream because no active SDK session exists",
            "stop",
            "sdk_not_implemented",
        )

    def set_param(self, key: str, value: str) -> None:
        if not key:
            raise BackendError("parameter key cannot be empty", operation="set_param")
        if value == "":
            raise BackendError("parameter value cannot be empty", operation="set_param")
        if key == SDK_LOG_PARAM:
            self._sdk_log.open(value)
            self._params[key] = value
            return
        self._params[key] = value
        self._sdk_log.append(f"set_param key={key} value={value} status=accepted")

    def dump_config(self) -> BackendConfig:
        config = dict(self._params)
        config["connected"] = "true" if self._connected else "false"
        config["running"] = "true" if self._running else "false"
        return config

    def pull_frames(self, duration_ms: int) -> List[FrameSample]:
        if duration_ms < 0:
            raise self._fail("pull_frames duration cannot be negative", "pull_frames", "negative_duration")
        if not self._connected:
            raise self._fail(
                "real backend stub cannot pull_frames before a successful connect",
                "pull_frames",
                "not_connected",
            )
        if not self._running:
            raise self._fail(
                "real backend stub cannot pull frames while stream is stopped",
                "pull_frames",
                "stream_not_running",
            )
        raise self._fail(
            "real backend stub cannot produce frames because SDK adapter is not implemented",
            "pull_frames",
            "sdk_not_implemented",
        )


__all__ = ["RealCameraBackendStub", "build_connection_error"]
