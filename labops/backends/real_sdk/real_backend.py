"""Real camera backend skeleton.

Lifecycle and SDK context handling are real; frame content is a seeded
placeholder stream until a vendor adapter is linked. Setting
``LABOPS_REAL_DISCONNECT_AFTER_PULLS=N`` makes the N-th pull report a device
disconnect and keeps later connects failing, so reconnect handling can be
exercised without unplugging hardware.
"""

from __future__ import annotations

import math
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from labops.backends.base import BackendConfig, CameraBackend, FrameSample
from labops.backends.real_sdk.acquisition_loop import (
    AcquisitionLoopInput,
    DeterministicFrameProvider,
    FrameProvider,
    run_acquisition_loop,
)
from labops.backends.sim import MASK64
from labops.backends.real_sdk.sdk_context import SdkContext
from labops.core.errors import BackendError
from labops.core.logging_utils import get_module_logger
from labops.core.time_utils import CaptureClock

logger = get_module_logger("RealBackend")

DISCONNECT_AFTER_PULLS_ENV = "LABOPS_REAL_DISCONNECT_AFTER_PULLS"
SDK_LOG_PARAM = "sdk.log.path"

DEFAULT_FRAME_RATE_FPS = 30.0
DEFAULT_FRAME_SIZE_BYTES = 4096
DEFAULT_TIMEOUT_PERCENT = 1.0
DEFAULT_INCOMPLETE_PERCENT = 1.0
DEFAULT_SEED = 1


def read_positive_int_env(name: str) -> Optional[int]:
    raw = os.environ.get(name, "")
    if not raw.isdigit() or int(raw) == 0:
        return None
    return int(raw)


class StreamSession:
    """Acquisition start/stop pair; stop is idempotent."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running = False
        self.start_calls = 0
        self.stop_calls = 0

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                raise BackendError("real backend stream session is already running", operation="start")
            self._running = True
            self.start_calls += 1

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self.stop_calls += 1


class SdkLogCapture:
    """Append-only text log of backend calls, opt-in via ``sdk.log.path``."""

    def __init__(self, backend_name: str) -> None:
        self._backend_name = backend_name
        self.path: Optional[Path] = None

    def open(self, path_text: str) -> None:
        path = Path(path_text)
        try:
            path.write_text(f"sdk_log_capture=enabled backend={self._backend_name}\n", encoding="utf-8")
        except OSError as e:
            raise BackendError(f"unable to open sdk log path: {path_text}", operation="set_param") from e
        self.path = path

    def append(self, message: str) -> None:
        if self.path is None:
            return
        try:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(message + "\n")
        except OSError as e:
            logger.debug("sdk log append failed", path=self.path, error=e)


class RealBackend(CameraBackend):
    name = "real"

    def __init__(
        self,
        *,
        clock: Optional[CaptureClock] = None,
        frame_provider: Optional[FrameProvider] = None,
    ) -> None:
        self._clock = clock or CaptureClock.reset_to_now()
        self._frame_provider = frame_provider
        self._stall_periods_total = 0
        self._sdk_context = SdkContext()
        self._session = StreamSession()
        self._sdk_log = SdkLogCapture("real")
        self._connected = False
        self._disconnect_latched = False
        self._pull_calls = 0
        self._next_frame_id = 0
        self._stream_start: Optional[datetime] = None
        self._params: Dict[str, str] = {
            "backend": "real",
            "integration_stage": "skeleton",
            "sdk_adapter": "pending_vendor_integration",
            "stream_session": "raii",
            "AcquisitionFrameRate": "30",
            "PayloadSize": str(DEFAULT_FRAME_SIZE_BYTES),
            "FrameTimeoutPercent": "1.0",
            "FrameIncompletePercent": "1.0",
            "FrameSeed": str(DEFAULT_SEED),
        }
        self._disconnect_after_pulls = read_positive_int_env(DISCONNECT_AFTER_PULLS_ENV)
        if self._disconnect_after_pulls is not None:
            self._params["simulate_disconnect_after_pull_calls"] = str(self._disconnect_after_pulls)

    def _fail(self, message: str, operation: str, reason: str) -> BackendError:
        self._sdk_log.append(f"{operation} status=error reason={reason}")
        return BackendError(message, operation=operation)

    def _not_connected(self, operation: str) -> BackendError:
        return self._fail(
            f"real backend skeleton cannot {operation} before a successful connect",
            operation,
            "not_connected",
        )

    def connect(self) -> None:
        if self._connected:
            raise self._fail("real backend skeleton is already connected", "connect", "already_connected")
        if self._disconnect_latched:
            raise self._fail(
                "device unavailable after disconnect", "connect", "device_unavailable_after_disconnect"
            )
        try:
            self._sdk_context.acquire()
        except BackendError:
            self._sdk_log.append("connect status=error reason=sdk_context_acquire_failed")
            raise
        self._connected = True
        self._sdk_log.append("connect status=success")

    def start(self) -> None:
        if not self._connected:
            raise self._not_connected("start")
        try:
            self._session.start()
        except BackendError:
            self._sdk_log.append("start status=error reason=stream_session_start_failed")
            raise
        if self._next_frame_id == 0:
            self._stream_start = self._clock.now_wall()
        self._sdk_log.append("start status=success")

    def stop(self) -> None:
        if not self._connected and not self._session.running:
            self._sdk_log.append("stop status=success reason=already_stopped")
            return
        if not self._connected:
            raise self._not_connected("stop")
        self._session.stop()
        self._sdk_log.append("stop status=success")

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
        config["running"] = "true" if self._session.running else "false"
        return config

    def close(self) -> None:
        self._session.stop()
        self._connected = False
        self._sdk_context.release()

    # ------------------------------------------------------------------
    # Parameter resolution

    def _lookup(self, keys: Sequence[str]) -> Optional[str]:
        for key in keys:
            if key in self._params:
                return self._params[key]
        return None

    def _resolve_frame_rate(self) -> float:
        raw = self._lookup(("AcquisitionFrameRate", "frame_rate", "fps"))
        if raw is None:
            return DEFAULT_FRAME_RATE_FPS
        value = _parse_finite_float(raw)
        if value is None or value <= 0.0:
            raise BackendError(f"invalid AcquisitionFrameRate parameter value: {raw}", operation="pull_frames")
        return value

    def _resolve_frame_size(self) -> int:
        raw = self._lookup(("PayloadSize", "frame_size_bytes"))
        if raw is None:
            return DEFAULT_FRAME_SIZE_BYTES
        if not raw.isdigit() or int(raw) == 0 or int(raw) > 0xFFFFFFFF:
            raise BackendError(f"invalid PayloadSize parameter value: {raw}", operation="pull_frames")
        return int(raw)

    def _resolve_seed(self) -> int:
        raw = self._lookup(("FrameSeed", "seed"))
        if raw is None:
            return DEFAULT_SEED
        if not raw.isdigit() or int(raw) > MASK64:
            raise BackendError(f"invalid FrameSeed parameter value: {raw}", operation="pull_frames")
        return int(raw)

    def _resolve_percent(self, keys: Sequence[str], default: float) -> float:
        raw = self._lookup(keys)
        if raw is None:
            return default
        value = _parse_finite_float(raw)
        if value is None or value < 0.0 or value > 100.0:
            raise BackendError(
                f"invalid {keys[0]} parameter value: {raw} (expected 0..100)", operation="pull_frames"
            )
        return value

    def pull_frames(self, duration_ms: int) -> List[FrameSample]:
        if duration_ms < 0:
            raise self._fail("pull_frames duration cannot be negative", "pull_frames", "negative_duration")
        if not self._connected:
            raise self._not_connected("pull_frames")
        if not self._session.running:
            raise self._fail(
                "real backend skeleton cannot pull frames while stream is stopped",
                "pull_frames",
                "stream_not_running",
            )
        if duration_ms == 0:
            self._sdk_log.append("pull_frames status=success frames=0 reason=zero_duration")
            return []

        self._pull_calls += 1
        if self._disconnect_after_pulls is not None and self._pull_calls >= self._disconnect_after_pulls:
            self._session.stop()
            self._disconnect_latched = True
            self._connected = False
            raise self._fail("device disconnected during acquisition", "pull_frames", "device_disconnected")

        fps = self._resolve_frame_rate()
        frame_size = self._resolve_frame_size()
        seed = self._resolve_seed()
        timeout_percent = self._resolve_percent(
            ("FrameTimeoutPercent", "frame_timeout_percent", "timeout_percent"), DEFAULT_TIMEOUT_PERCENT
        )
        incomplete_percent = self._resolve_percent(
            ("FrameIncompletePercent", "frame_incomplete_percent", "incomplete_percent"),
            DEFAULT_INCOMPLETE_PERCENT,
        )
        # timeout and incomplete share one probability bucket
        incomplete_percent = min(incomplete_percent, 100.0 - timeout_percent)

        provider = self._frame_provider or DeterministicFrameProvider(
            seed, frame_size, timeout_percent, incomplete_percent
        )
        assert self._stream_start is not None
        try:
            result = run_acquisition_loop(
                provider,
                AcquisitionLoopInput(
                    duration_ms=duration_ms,
                    frame_rate_fps=fps,
                    default_frame_size_bytes=frame_size,
                    stream_start=self._stream_start,
                    first_frame_id=self._next_frame_id,
                ),
                stall_periods_before=self._stall_periods_total,
            )
        except BackendError as e:
            self._sdk_log.append(f"pull_frames status=error reason={e}")
            raise
        self._next_frame_id = result.next_frame_id
        self._stall_periods_total += result.counters.stall_periods_total

        counters = result.counters
        self._sdk_log.append(
            f"pull_frames status=success frames={counters.frames_total} received={counters.frames_received} "
            f"timeout={counters.frames_timeout} incomplete={counters.frames_incomplete}"
        )
        return result.frames


def _parse_finite_float(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


__all__ = [
    "DISCONNECT_AFTER_PULLS_ENV",
    "RealBackend",
    "SdkLogCapture",
    "StreamSession",
]
