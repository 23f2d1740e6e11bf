from .emitter import (
    ConfigStatusEvent,
    ConfigStatusKind,
    Emitter,
    FrameOutcomeEvent,
    StreamStartedEvent,
    TransportAnomalyEvent,
)
from .jsonl_writer import append_event_jsonl
from .model import Event, EventType, serialize_event
from .transport_anomaly import TransportAnomalyFinding, detect_transport_anomalies

__all__ = [
    "ConfigStatusEvent",
    "ConfigStatusKind",
    "Emitter",
    "Event",
    "EventType",
    "FrameOutcomeEvent",
    "StreamStartedEvent",
    "TransportAnomalyEvent",
    "TransportAnomalyFinding",
    "append_event_jsonl",
    "detect_transport_anomalies",
    "serialize_event",
]
