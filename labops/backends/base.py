"""Frame sample model and the camera backend capability."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

BackendConfig = Dict[str, str]


class FrameOutcome(Enum):
    RECEIVED = "received"
    DROPPED = "dropped"
    TIMEOUT = "timeout"
    INCOMPLETE = "incomplete"


@dataclass(slots=True)
class FrameSample:
    """One acquisition attempt.

    ``dropped`` is optional so backends that cannot tell can leave it unset;
    ``is_dropped`` only reports an explicit drop marker.
    """

    frame_id: int
    timestamp: datetime
    size_bytes: int = 0
    dropped: Optional[bool] = None
    outcome: FrameOutcome = FrameOutcome.RECEIVED

    @property
    def is_dropped(self) -> bool:
        return self.dropped is True

    @classmethod
    def received(cls, frame_id: int, timestamp: datetime, size_bytes: int) -> "FrameSample":
        return cls(frame_id, timestamp, size_bytes, False, FrameOutcome.RECEIVED)

    @classmethod
    def dropped_frame(cls, frame_id: int, timestamp: datetime) -> "FrameSample":
        return cls(frame_id, timestamp, 0, True, FrameOutcome.DROPPED)

    @classmethod
    def timed_out(cls, frame_id: int, timestamp: datetime) -> "FrameSample":
        return cls(frame_id, timestamp, 0, True, FrameOutcome.TIMEOUT)

    @classmethod
    def incomplete(cls, frame_id: int, timestamp: datetime, size_bytes: int = 0) -> "FrameSample":
        return cls(frame_id, timestamp, size_bytes, True, FrameOutcome.INCOMPLETE)


class CameraBackend(ABC):
    """Capability every backend variant implements.

    Operations raise ``BackendError`` with a one-line message on failure.
    ``pull_frames`` blocks for up to ``duration_ms`` and returns samples in
    acquisition order.
    """

    name: str = "backend"

    @abstractmethod
    def connect(self) -> None:
        ...

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @abstractmethod
    def set_param(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def dump_config(self) -> BackendConfig:
        ...

    @abstractmethod
    def pull_frames(self, duration_ms: int) -> List[FrameSample]:
        ...

    def close(self) -> None:
        """Release backend resources; safe to call more than once."""


__all__ = ["BackendConfig", "CameraBackend", "FrameOutcome", "FrameSample"]
