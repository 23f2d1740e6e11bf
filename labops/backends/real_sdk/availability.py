"""Whether the real backend path is switched on for this process."""

from __future__ import annotations

import os

REAL_BACKEND_ENV = "LABOPS_REAL_BACKEND"

STATUS_ENABLED = "enabled"
STATUS_SDK_NOT_FOUND = "disabled (SDK not found)"
STATUS_OPTION_OFF = "disabled (build option OFF)"

_TRUTHY = {"1", "true", "on", "yes"}
_FALSY = {"0", "false", "off", "no"}


def real_backend_status() -> str:
    """Return the availability text shown by ``list-backends``.

    Unset means no vendor SDK was configured; an explicit falsy value means
    the operator switched the path off.
    """
    raw = os.environ.get(REAL_BACKEND_ENV, "").strip().lower()
    if raw in _TRUTHY:
        return STATUS_ENABLED
    if raw in _FALSY:
        return STATUS_OPTION_OFF
    return STATUS_SDK_NOT_FOUND


def is_real_backend_enabled() -> bool:
    return real_backend_status() == STATUS_ENABLED


__all__ = ["REAL_BACKEND_ENV", "is_real_backend_enabled", "real_backend_status"]
