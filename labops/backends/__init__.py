"""Camera backend variants and the name-based factory."""

from __future__ import annotations

from typing import List, Optional, Tuple

from labops.backends.base import BackendConfig, CameraBackend, FrameOutcome, FrameSample
from labops.backends.real_sdk import RealBackend, RealCameraBackendStub
from labops.backends.real_sdk.availability import is_real_backend_enabled, real_backend_status
from labops.backends.sim import SimCameraBackend
from labops.backends.webcam import WebcamBackend, probe_platform
from labops.core.errors import BackendError
from labops.core.time_utils import CaptureClock

BACKEND_SIM = "sim"
BACKEND_WEBCAM = "webcam"
BACKEND_REAL_STUB = "real_stub"
SCENARIO_BACKENDS = (BACKEND_SIM, BACKEND_WEBCAM, BACKEND_REAL_STUB)


def create_backend(name: str, clock: Optional[CaptureClock] = None) -> CameraBackend:
    """Build the backend a run plan names.

    ``real_stub`` yields the real placeholder backend when
    ``LABOPS_REAL_BACKEND`` enables it, otherwise the always-failing stub.
    ``clock`` is the run's capture clock; frame timestamps are derived from it.
    """
    if name == BACKEND_SIM:
        return SimCameraBackend(clock=clock)
    if name == BACKEND_WEBCAM:
        return WebcamBackend(clock=clock)
    if name == BACKEND_REAL_STUB:
        return RealBackend(clock=clock) if is_real_backend_enabled() else RealCameraBackendStub()
    raise BackendError(f"unsupported backend in run plan: {name}")


def list_backend_statuses() -> List[Tuple[str, bool, str]]:
    """``(name, available, status_text)`` rows for ``list-backends``."""
    webcam = probe_platform()
    real_enabled = is_real_backend_enabled()
    return [
        ("sim", True, "enabled"),
        ("webcam", webcam.available, "enabled" if webcam.available else f"disabled ({webcam.reason})"),
        ("real", real_enabled, real_backend_status()),
    ]


__all__ = [
    "BACKEND_REAL_STUB",
    "BACKEND_SIM",
    "BACKEND_WEBCAM",
    "BackendConfig",
    "CameraBackend",
    "FrameOutcome",
    "FrameSample",
    "SCENARIO_BACKENDS",
    "create_backend",
    "list_backend_statuses",
]
