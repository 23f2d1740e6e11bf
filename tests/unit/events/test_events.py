"""Unit tests for event serialization, the JSONL appender and the emitter."""

import json
from datetime import datetime, timezone

import pytest

from labops.backends.base import FrameOutcome
from labops.backends.real_sdk.transport_counters import collect_transport_counters
from labops.core.errors import ArtifactWriteError
from labops.events import (
    ConfigStatusEvent,
    ConfigStatusKind,
    Emitter,
    Event,
    EventType,
    FrameOutcomeEvent,
    StreamStartedEvent,
    append_event_jsonl,
    detect_transport_anomalies,
    serialize_event,
)

TS = datetime(2026, 1, 15, 12, 0, 0, 250000, tzinfo=timezone.utc)


def read_events(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


class TestSerializeEvent:

    def test_layout(self):
        line = serialize_event(Event(TS, EventType.FRAME_RECEIVED, {"frame_id": "1", "b": "2"}))
        assert line == (
            '{"ts_utc":"2026-01-15T12:00:00.250Z","type":"FRAME_RECEIVED",'
            '"payload":{"frame_id":"1","b":"2"}}'
        )

    def test_escaping_is_valid_json(self):
        text = 'quote " backslash \\ newline \n bell \x07'
        line = serialize_event(Event(TS, EventType.INFO, {"msg": text}))
        assert json.loads(line)["payload"]["msg"] == text
        assert "\n" not in line


@pytest.mark.asyncio
class TestAppendEventJsonl:

    async def test_appends_lines_in_order(self, tmp_path):
        await append_event_jsonl(Event(TS, EventType.INFO, {"n": "1"}), tmp_path / "run")
        path = await append_event_jsonl(Event(TS, EventType.INFO, {"n": "2"}), tmp_path / "run")
        assert path.name == "events.jsonl"
        assert [e["payload"]["n"] for e in read_events(path)] == ["1", "2"]

    async def test_empty_dir_rejected(self):
        with pytest.raises(ArtifactWriteError, match="output directory cannot be empty"):
            await append_event_jsonl(Event(TS, EventType.INFO), "")


@pytest.mark.asyncio
class TestEmitter:

    async def test_stream_started_payload(self, tmp_path):
        emitter = Emitter(tmp_path)
        await emitter.emit_stream_started(
            StreamStartedEvent(TS, "run-1", "sim_baseline", "sim", 2000, 30, 7)
        )
        event = read_events(emitter.events_path)[0]
        assert event["type"] == "STREAM_STARTED"
        assert list(event["payload"]) == [
            "run_id", "scenario_id", "backend", "duration_ms", "fps", "seed", "soak_mode", "resume",
        ]
        assert event["payload"]["soak_mode"] == "false"

    async def test_frame_outcomes(self, tmp_path):
        emitter = Emitter(tmp_path)
        await emitter.emit_frame_outcome(FrameOutcomeEvent(TS, "run-1", 0, 100, False))
        await emitter.emit_frame_outcome(FrameOutcomeEvent(TS, "run-1", 1, 0, True, FrameOutcome.DROPPED))
        await emitter.emit_frame_outcome(
            FrameOutcomeEvent(TS, "run-1", 2, 0, True, FrameOutcome.TIMEOUT, "acquisition_timeout")
        )
        received, dropped, timeout = read_events(emitter.events_path)
        assert received["type"] == "FRAME_RECEIVED"
        assert "reason" not in received["payload"]
        assert dropped["payload"]["reason"] == "backend_marked_dropped"
        assert timeout["type"] == "FRAME_TIMEOUT"
        assert timeout["payload"]["reason"] == "acquisition_timeout"

    async def test_config_events(self, tmp_path):
        emitter = Emitter(tmp_path)
        await emitter.emit_config_status(ConfigStatusEvent(
            ConfigStatusKind.APPLIED, TS, "run-1", "s", applied_params={"fps": "30", "run_id": "x"},
        ))
        await emitter.emit_config_status(ConfigStatusEvent(
            ConfigStatusKind.UNSUPPORTED, TS, "run-1", "s", apply_mode="strict",
            generic_key="white_balance", requested_value="auto", reason="no mapping",
        ))
        await emitter.emit_config_status(ConfigStatusEvent(
            ConfigStatusKind.ADJUSTED, TS, "run-1", "s", apply_mode="best_effort",
            generic_key="gain", node_name="Gain", requested_value="100", applied_value="48", reason="clamped",
        ))
        applied, unsupported, adjusted = read_events(emitter.events_path)
        assert applied["payload"]["run_id"] == "run-1"
        assert applied["payload"]["param.run_id"] == "x"
        assert applied["payload"]["applied_count"] == "2"
        assert unsupported["type"] == "CONFIG_UNSUPPORTED"
        assert adjusted["payload"]["applied_value"] == "48"


class TestTransportAnomalyHeuristics:

    def test_no_counters(self):
        assert detect_transport_anomalies(None) == []

    def test_thresholds_in_fixed_order(self):
        counters = collect_transport_counters({
            "transport.dropped_packets": "2",
            "transport.resends": "50",
            "transport.packet_errors": "0",
        })
        findings = detect_transport_anomalies(counters)
        assert [f.heuristic_id for f in findings] == ["resend_spike_threshold", "dropped_packet_threshold"]
        assert findings[0].summary == "Transport anomaly: resend spike counter 50 exceeded threshold 50."
