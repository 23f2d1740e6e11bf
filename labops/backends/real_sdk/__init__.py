"""Real camera backend pieces: discovery, parameter apply, reconnect, SDK lifetime."""

from .availability import is_real_backend_enabled, real_backend_status
from .device_discovery import RealDeviceInfo, enumerate_connected_devices, resolve_connected_device
from .error_mapper import RealErrorCode, RealFailureDetails, map_real_failure
from .real_backend import RealBackend
from .sdk_context import SdkContext
from .stub import RealCameraBackendStub

__all__ = [
    "RealBackend",
    "RealCameraBackendStub",
    "RealDeviceInfo",
    "RealErrorCode",
    "RealFailureDetails",
    "SdkContext",
    "enumerate_connected_devices",
    "is_real_backend_enabled",
    "map_real_failure",
    "real_backend_status",
    "resolve_connected_device",
]
