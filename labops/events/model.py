"""Run timeline events and their single-line JSON rendering."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict

from labops.core.time_utils import format_utc_timestamp


class EventType(Enum):
    RUN_STARTED = "run_started"
    CONFIG_APPLIED = "CONFIG_APPLIED"
    CONFIG_UNSUPPORTED = "CONFIG_UNSUPPORTED"
    CONFIG_ADJUSTED = "CONFIG_ADJUSTED"
    STREAM_STARTED = "STREAM_STARTED"
    FRAME_RECEIVED = "FRAME_RECEIVED"
    FRAME_DROPPED = "FRAME_DROPPED"
    FRAME_TIMEOUT = "FRAME_TIMEOUT"
    FRAME_INCOMPLETE = "FRAME_INCOMPLETE"
    STREAM_STOPPED = "STREAM_STOPPED"
    DEVICE_DISCONNECTED = "DEVICE_DISCONNECTED"
    TRANSPORT_ANOMALY = "TRANSPORT_ANOMALY"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Event:
    ts: datetime
    type: EventType
    payload: Dict[str, str] = field(default_factory=dict)


def serialize_event(event: Event) -> str:
    """One compact JSON object, payload keys kept in insertion order."""
    document = {
        "ts_utc": format_utc_timestamp(event.ts),
        "type": event.type.value,
        "payload": {str(key): str(value) for key, value in event.payload.items()},
    }
    return json.dumps(document, ensure_ascii=False, separators=(",", ":"))


__all__ = ["Event", "EventType", "serialize_event"]
