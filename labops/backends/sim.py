"""Deterministic simulated camera with fault injection."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from labops.backends.base import BackendConfig, CameraBackend, FrameSample
from labops.core.errors import BackendError
from labops.core.time_utils import CaptureClock

DEFAULT_FPS = 30
DEFAULT_FRAME_SIZE_BYTES = 1_048_576
DEFAULT_SEED = 1

MASK64 = 0xFFFFFFFFFFFFFFFF
SPLITMIX_INCREMENT = 0x9E3779B97F4A7C15
DROP_PATTERN_SALT = 0xA0761D6478BD642F
REORDER_SALT = 0xE7037ED1A0B428DB


def splitmix64(value: int) -> int:
    state = (value + SPLITMIX_INCREMENT) & MASK64
    state = ((state ^ (state >> 30)) * 0xBF58476D1CE4E5B9) & MASK64
    state = ((state ^ (state >> 27)) * 0x94D049BB133111EB) & MASK64
    return state ^ (state >> 31)


def deterministic_jitter_us(seed: int, frame_id: int, max_abs_jitter_us: int) -> int:
    if max_abs_jitter_us == 0:
        return 0
    mixed = splitmix64(seed ^ ((frame_id * SPLITMIX_INCREMENT) & MASK64))
    span = max_abs_jitter_us * 2 + 1
    return (mixed % span) - max_abs_jitter_us


def deterministic_percent_hit(seed: int, frame_id: int, percent: int) -> bool:
    if percent == 0:
        return False
    if percent >= 100:
        return True
    mixed = splitmix64(((seed ^ DROP_PATTERN_SALT) + frame_id * SPLITMIX_INCREMENT) & MASK64)
    return (mixed % 100) < percent


def _parse_uint(text: str) -> Optional[int]:
    if not text or not text.isdigit():
        return None
    return int(text)


@dataclass
class SimScenarioConfig:
    fps: int = DEFAULT_FPS
    jitter_us: int = 0
    seed: int = DEFAULT_SEED
    frame_size_bytes: int = DEFAULT_FRAME_SIZE_BYTES
    drop_every_n: int = 0
    drop_percent: int = 0
    burst_drop: int = 0
    reorder: int = 0

    def as_params(self) -> Dict[str, str]:
        return {
            "fps": str(self.fps),
            "jitter_us": str(self.jitter_us),
            "seed": str(self.seed),
            "frame_size_bytes": str(self.frame_size_bytes),
            "drop_every_n": str(self.drop_every_n),
            "drop_percent": str(self.drop_percent),
            "burst_drop": str(self.burst_drop),
            "reorder": str(self.reorder),
        }


def apply_scenario_config(backend: CameraBackend, config: SimScenarioConfig) -> Dict[str, str]:
    """Push sim knobs into ``backend`` and return what was applied."""
    if config.drop_percent > 100:
        raise BackendError("drop_percent must be in range [0,100]", operation="set_param")
    applied = config.as_params()
    for key, value in applied.items():
        backend.set_param(key, value)
    return applied


class SimCameraBackend(CameraBackend):
    name = "sim"

    def __init__(self, *, clock: Optional[CaptureClock] = None) -> None:
        self._clock = clock or CaptureClock.reset_to_now()
        self._connected = False
        self._running = False
        self._next_frame_id = 0
        self._stream_start: Optional[datetime] = None
        self._params: Dict[str, str] = {
            "backend": "sim",
            "fps": str(DEFAULT_FPS),
            "jitter_us": "0",
            "frame_size_bytes": str(DEFAULT_FRAME_SIZE_BYTES),
            "drop_every_n": "0",
            "drop_percent": "0",
            "burst_drop": "0",
            "reorder": "0",
            "seed": str(DEFAULT_SEED),
            "pixel_format": "mono8",
            "trigger_mode": "free_run",
        }

    def connect(self) -> None:
        if self._connected:
            raise BackendError("sim backend is already connected", operation="connect")
        self._connected = True

    def start(self) -> None:
        if not self._connected:
            raise BackendError("sim backend must be connected before start", operation="start")
        if self._running:
            raise BackendError("sim backend is already running", operation="start")
        self._running = True
        self._next_frame_id = 0
        self._stream_start = self._clock.now_wall()

    def stop(self) -> None:
        if not self._running:
            raise BackendError("sim backend is not running", operation="stop")
        self._running = False

    def set_param(self, key: str, value: str) -> None:
        if not key:
            raise BackendError("parameter key cannot be empty", operation="set_param")
        if value == "":
            raise BackendError("parameter value cannot be empty", operation="set_param")
        self._params[key] = value

    def dump_config(self) -> BackendConfig:
        config = dict(self._params)
        config["connected"] = "true" if self._connected else "false"
        config["running"] = "true" if self._running else "false"
        return config

    # ------------------------------------------------------------------
    # Parameter resolution

    def _resolve(self, key: str, default: int, *, positive: bool = False, upper: Optional[int] = None) -> int:
        text = self._params.get(key)
        if text is None:
            return default
        value = _parse_uint(text)
        if value is None or (positive and value == 0) or (upper is not None and value > upper):
            raise BackendError(f"invalid {key} parameter value: {text}", operation="pull_frames")
        return value

    def pull_frames(self, duration_ms: int) -> List[FrameSample]:
        if not self._running:
            raise BackendError("sim backend must be running before pull_frames", operation="pull_frames")
        if duration_ms < 0:
            raise BackendError("pull_frames duration cannot be negative", operation="pull_frames")
        if duration_ms == 0:
            return []

        fps = self._resolve("fps", DEFAULT_FPS, positive=True)
        jitter_us = self._resolve("jitter_us", 0)
        frame_size_bytes = self._resolve("frame_size_bytes", DEFAULT_FRAME_SIZE_BYTES, positive=True)
        seed = self._resolve("seed", DEFAULT_SEED)
        drop_every_n = self._resolve("drop_every_n", 0)
        drop_percent = self._resolve("drop_percent", 0, upper=100)
        burst_drop = self._resolve("burst_drop", 0)
        reorder = self._resolve("reorder", 0)

        frame_count = (duration_ms * fps) // 1000
        frames: List[FrameSample] = []
        if frame_count == 0:
            return frames

        period_ns = max(1, 1_000_000_000 // fps)
        assert self._stream_start is not None
        burst_remaining = 0
        for _ in range(frame_count):
            frame_id = self._next_frame_id
            self._next_frame_id += 1
            offset_us = (period_ns * frame_id) // 1000 + deterministic_jitter_us(seed, frame_id, jitter_us)
            timestamp = self._stream_start + timedelta(microseconds=offset_us)
            if frames and timestamp <= frames[-1].timestamp:
                timestamp = frames[-1].timestamp + timedelta(microseconds=1)

            periodic_drop = drop_every_n > 0 and (frame_id + 1) % drop_every_n == 0
            drop_trigger = periodic_drop or deterministic_percent_hit(seed, frame_id, drop_percent)
            if burst_drop > 0 and drop_trigger:
                burst_remaining = max(burst_remaining, burst_drop)

            is_dropped = drop_trigger
            if burst_drop > 0 and burst_remaining > 0:
                is_dropped = True
                burst_remaining -= 1

            if is_dropped:
                frames.append(FrameSample.dropped_frame(frame_id, timestamp))
            else:
                frames.append(FrameSample.received(frame_id, timestamp, frame_size_bytes))

        if reorder > 1 and len(frames) > 1:
            # transport-level reorder inside bounded windows, reproducible per seed
            def reorder_key(sample: FrameSample):
                mixed = splitmix64(((seed ^ REORDER_SALT) + sample.frame_id * SPLITMIX_INCREMENT) & MASK64)
                return (mixed, sample.frame_id)

            for start in range(0, len(frames), reorder):
                frames[start:start + reorder] = sorted(frames[start:start + reorder], key=reorder_key)

        return frames


__all__ = [
    "SimCameraBackend",
    "SimScenarioConfig",
    "apply_scenario_config",
    "splitmix64",
    "SPLITMIX_INCREMENT",
    "MASK64",
]
