"""Exception hierarchy shared across labops components.

Every error carries a single-line, operator-facing message. Callers at the
orchestrator boundary turn them into log lines, events and exit codes.
"""

from __future__ import annotations


class LabOpsError(Exception):
    """Base class for all labops failures."""


class JsonParseError(LabOpsError):
    def __init__(self, message: str, line: int = 0, column: int = 0) -> None:
        super().__init__(message)
        self.line = line
        self.column = column


class ScenarioError(LabOpsError):
    """Scenario file could not be loaded or converted into a run plan."""


class SelectorError(LabOpsError):
    """Device selector text is malformed or resolves to no device."""


class BackendError(LabOpsError):
    """A camera backend operation failed."""

    def __init__(self, message: str, operation: str = "") -> None:
        super().__init__(message)
        self.operation = operation


class BackendNotAvailableError(BackendError):
    """Requested backend is not available on this host."""


class LifecycleError(LabOpsError):
    """Illegal backend lifecycle transition."""


class MetricsError(LabOpsError):
    pass


class AtomicWriteError(LabOpsError):
    pass


class ArtifactWriteError(LabOpsError):
    pass


class BundleZipError(ArtifactWriteError):
    pass


class CheckpointError(LabOpsError):
    """Soak checkpoint or frame cache could not be read back."""


__all__ = [
    "LabOpsError",
    "JsonParseError",
    "ScenarioError",
    "SelectorError",
    "BackendError",
    "BackendNotAvailableError",
    "LifecycleError",
    "MetricsError",
    "AtomicWriteError",
    "ArtifactWriteError",
    "BundleZipError",
    "CheckpointError",
]
