"""Typed event envelopes appended to a run's ``events.jsonl``."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from labops.backends.base import FrameOutcome
from labops.events.jsonl_writer import append_event_jsonl
from labops.events.model import Event, EventType

_OUTCOME_EVENT_TYPES = {
    FrameOutcome.RECEIVED: EventType.FRAME_RECEIVED,
    FrameOutcome.DROPPED: EventType.FRAME_DROPPED,
    FrameOutcome.TIMEOUT: EventType.FRAME_TIMEOUT,
    FrameOutcome.INCOMPLETE: EventType.FRAME_INCOMPLETE,
}

DEFAULT_DROP_REASON = "backend_marked_dropped"


@dataclass
class StreamStartedEvent:
    ts: datetime
    run_id: str
    scenario_id: str
    backend: str
    duration_ms: int
    fps: int
    seed: int
    soak_mode: bool = False
    resume: bool = False


@dataclass
class FrameOutcomeEvent:
    ts: datetime
    run_id: str
    frame_id: int
    size_bytes: int
    dropped: bool
    outcome: FrameOutcome = FrameOutcome.RECEIVED
    reason: Optional[str] = None


class ConfigStatusKind(Enum):
    APPLIED = "applied"
    UNSUPPORTED = "unsupported"
    ADJUSTED = "adjusted"


@dataclass
class ConfigStatusEvent:
    kind: ConfigStatusKind
    ts: datetime
    run_id: str
    scenario_id: str
    applied_params: Dict[str, str] = field(default_factory=dict)
    apply_mode: str = ""
    generic_key: str = ""
    requested_value: str = ""
    reason: str = ""
    node_name: str = ""
    applied_value: str = ""


@dataclass
class TransportAnomalyEvent:
    ts: datetime
    run_id: str
    scenario_id: str
    heuristic_id: str
    counter: str
    observed_value: int
    threshold: int
    summary: str


def _flag(value: bool) -> str:
    return "true" if value else "false"


class Emitter:
    """Builds payloads for each envelope and appends them in call order."""

    def __init__(self, output_dir: Union[str, Path]) -> None:
        self.output_dir = Path(output_dir)
        self.events_path: Optional[Path] = None

    async def emit_trace(self, event_type: EventType, ts: datetime, payload: Mapping[str, str]) -> Path:
        self.events_path = await append_event_jsonl(Event(ts, event_type, dict(payload)), self.output_dir)
        return self.events_path

    async def emit_stream_started(self, event: StreamStartedEvent) -> Path:
        return await self.emit_trace(
            EventType.STREAM_STARTED,
            event.ts,
            {
                "run_id": event.run_id,
                "scenario_id": event.scenario_id,
                "backend": event.backend,
                "duration_ms": str(event.duration_ms),
                "fps": str(event.fps),
                "seed": str(event.seed),
                "soak_mode": _flag(event.soak_mode),
                "resume": _flag(event.resume),
            },
        )

    async def emit_frame_outcome(self, event: FrameOutcomeEvent) -> Path:
        payload = {
            "run_id": event.run_id,
            "frame_id": str(event.frame_id),
            "size_bytes": str(event.size_bytes),
            "dropped": _flag(event.dropped),
        }
        if event.dropped:
            payload["reason"] = event.reason if event.reason is not None else DEFAULT_DROP_REASON
        return await self.emit_trace(_OUTCOME_EVENT_TYPES[event.outcome], event.ts, payload)

    async def emit_config_status(self, event: ConfigStatusEvent) -> Path:
        if event.kind is ConfigStatusKind.APPLIED:
            payload = {
                "run_id": event.run_id,
                "scenario_id": event.scenario_id,
                "applied_count": str(len(event.applied_params)),
            }
            # prefixed so backend keys never shadow run metadata
            for key, value in event.applied_params.items():
                payload[f"param.{key}"] = value
            return await self.emit_trace(EventType.CONFIG_APPLIED, event.ts, payload)

        if event.kind is ConfigStatusKind.UNSUPPORTED:
            return await self.emit_trace(
                EventType.CONFIG_UNSUPPORTED,
                event.ts,
                {
                    "run_id": event.run_id,
                    "scenario_id": event.scenario_id,
                    "apply_mode": event.apply_mode,
                    "generic_key": event.generic_key,
                    "requested_value": event.requested_value,
                    "reason": event.reason,
                },
            )

        return await self.emit_trace(
            EventType.CONFIG_ADJUSTED,
            event.ts,
            {
                "run_id": event.run_id,
                "scenario_id": event.scenario_id,
                "apply_mode": event.apply_mode,
                "generic_key": event.generic_key,
                "node_name": event.node_name,
                "requested_value": event.requested_value,
                "applied_value": event.applied_value,
                "reason": event.reason,
            },
        )

    async def emit_transport_anomaly(self, event: TransportAnomalyEvent) -> Path:
        return await self.emit_trace(
            EventType.TRANSPORT_ANOMALY,
            event.ts,
            {
                "run_id": event.run_id,
                "scenario_id": event.scenario_id,
                "heuristic_id": event.heuristic_id,
                "counter": event.counter,
                "observed_value": str(event.observed_value),
                "threshold": str(event.threshold),
                "summary": event.summary,
            },
        )


__all__ = [
    "ConfigStatusEvent",
    "ConfigStatusKind",
    "DEFAULT_DROP_REASON",
    "Emitter",
    "FrameOutcomeEvent",
    "StreamStartedEvent",
    "TransportAnomalyEvent",
]
