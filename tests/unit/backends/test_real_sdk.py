"""Unit tests for the real-camera backend path: discovery, apply, reconnect."""

import re
from datetime import datetime, timedelta, timezone

import pytest

from labops.backends.base import FrameOutcome
from labops.backends.real_sdk import (
    RealBackend,
    RealCameraBackendStub,
    RealErrorCode,
    SdkContext,
    enumerate_connected_devices,
    is_real_backend_enabled,
    map_real_failure,
    real_backend_status,
    resolve_connected_device,
)
from labops.backends.real_sdk.acquisition_loop import (
    AcquisitionLoopInput,
    DeterministicFrameProvider,
    FrameProviderSample,
    determine_frame_outcome,
    run_acquisition_loop,
)
from labops.backends.real_sdk.apply_params import (
    ApplyParamInput,
    ParamApplyMode,
    StrictApplyError,
    append_skipped_transport_rows,
    apply_params,
    split_transport_tuning,
)
from labops.backends.real_sdk.device_discovery import (
    parse_device_fixture,
    parse_device_selector,
    resolve_device_selector,
)
from labops.backends.real_sdk.error_mapper import classify_detail, collapse_whitespace
from labops.backends.real_sdk.node_map import create_default_node_map
from labops.backends.real_sdk.param_key_map import ParamKeyMap, load_param_key_map
from labops.backends.real_sdk.reconnect_policy import (
    BackendLifecycle,
    LifecycleState,
    ReconnectAttemptResult,
    compute_reconnect_attempts_remaining,
    execute_reconnect_attempts,
    is_likely_disconnect_error,
)
from labops.backends.real_sdk.real_backend import SDK_LOG_PARAM
from labops.backends.real_sdk.stub import build_connection_error
from labops.backends.real_sdk.transport_counters import collect_transport_counters
from labops.core.errors import BackendError, BackendNotAvailableError, LifecycleError, SelectorError
from labops.core.time_utils import from_epoch_millis
from labops.metrics import compute_fps_report
from tests.infrastructure.mocks.backend_mocks import (
    FrozenClock,
    MockBackendConfig,
    RecordingBackend,
    ScriptedFrameProvider,
)

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

FIXTURE_CSV = """\
model,serial,user_id,transport,ip,mac,firmware,sdk
# lab bench
SprintCam,SN-001,left,GigE,10.0.0.5,aa-bb-cc-dd-ee-ff,1.2.3,4.5
SprintCam,SN-002,right,usb3
"""


@pytest.fixture
def real_enabled(monkeypatch):
    monkeypatch.setenv("LABOPS_REAL_BACKEND", "1")


@pytest.fixture
def device_fixture(tmp_path, monkeypatch):
    path = tmp_path / "devices.csv"
    path.write_text(FIXTURE_CSV, encoding="utf-8")
    monkeypatch.setenv("LABOPS_REAL_DEVICE_FIXTURE", str(path))
    return path


class TestAvailability:

    @pytest.mark.parametrize("value,status", [
        (None, "disabled (SDK not found)"),
        ("1", "enabled"),
        ("Yes", "enabled"),
        ("off", "disabled (build option OFF)"),
        ("maybe", "disabled (SDK not found)"),
    ])
    def test_status_text(self, monkeypatch, value, status):
        if value is not None:
            monkeypatch.setenv("LABOPS_REAL_BACKEND", value)
        assert real_backend_status() == status
        assert is_real_backend_enabled() is (status == "enabled")


class TestDeviceDiscovery:

    def test_fixture_parsing_normalizes(self):
        devices = parse_device_fixture(FIXTURE_CSV)
        assert len(devices) == 2
        first, second = devices
        assert first.transport == "gige"
        assert first.mac_address == "AA:BB:CC:DD:EE:FF"
        assert first.firmware_version == "1.2.3"
        assert second.transport == "usb"
        assert second.ip_address is None

    def test_short_line_rejected(self):
        with pytest.raises(BackendError, match="line 1: expected at least 4 CSV"):
            parse_device_fixture("model,serial\n")

    def test_disabled_backend(self):
        with pytest.raises(BackendNotAvailableError, match="real backend disabled"):
            enumerate_connected_devices()

    def test_no_fixture_means_no_devices(self, real_enabled):
        assert enumerate_connected_devices() == []

    def test_fixture_devices(self, real_enabled, device_fixture):
        assert [d.serial for d in enumerate_connected_devices()] == ["SN-001", "SN-002"]

    def test_resolve_by_user_id(self, real_enabled, device_fixture):
        device, index = resolve_connected_device("user_id:right")
        assert device.serial == "SN-002"
        assert index == 1


class TestDeviceSelector:

    def test_parse_combined(self):
        selector = parse_device_selector(" Serial:SN-1 , index:0 ")
        assert selector.serial == "SN-1"
        assert selector.index == 0

    @pytest.mark.parametrize("text,message", [
        ("", "selector cannot be empty"),
        ("serial", "must use key:value format"),
        ("serial:", "must provide a non-empty value"),
        ("serial:a,,index:0", "empty clause"),
        ("color:red", "not supported (allowed: serial, user_id, index)"),
        ("serial:a,serial:b", "duplicate serial key"),
        ("serial:a,user_id:b", "both serial and user_id"),
        ("index:-1", "non-negative integer"),
    ])
    def test_parse_errors(self, text, message):
        with pytest.raises(SelectorError, match=re.escape(message)):
            parse_device_selector(text)

    def test_resolution_rules(self):
        devices = parse_device_fixture(FIXTURE_CSV)
        with pytest.raises(SelectorError, match="no device matched selector serial:SN-9"):
            resolve_device_selector(devices, parse_device_selector("serial:SN-9"))
        with pytest.raises(SelectorError, match="out of range for 2 candidate"):
            resolve_device_selector(devices, parse_device_selector("index:2"))
        with pytest.raises(SelectorError, match="no connected cameras"):
            resolve_device_selector([], parse_device_selector("index:0"))


class TestParamKeyMap:

    def test_bundled_map(self):
        key_map = load_param_key_map()
        assert key_map.resolve("exposure") == "ExposureTime"
        assert "frame_rate" in key_map

    def test_override_env(self, tmp_path, monkeypatch):
        path = tmp_path / "map.json"
        path.write_text('{"exposure": "ExposureTimeAbs"}', encoding="utf-8")
        monkeypatch.setenv("LABOPS_PARAM_KEY_MAP", str(path))
        assert load_param_key_map().resolve("exposure") == "ExposureTimeAbs"

    def test_bad_file(self, tmp_path):
        path = tmp_path / "map.json"
        path.write_text('{"gain": ""}', encoding="utf-8")
        with pytest.raises(BackendError, match="failed to parse param key map"):
            ParamKeyMap.from_file(path)

    def test_empty_mapping(self):
        with pytest.raises(BackendError, match="at least one key mapping"):
            ParamKeyMap({})


class TestApplyParams:

    def _apply(self, params, mode=ParamApplyMode.BEST_EFFORT, backend=None):
        backend = backend or RecordingBackend()
        result = apply_params(backend, load_param_key_map(), create_default_node_map(), params, mode)
        return backend, result

    def test_applies_and_reads_back(self):
        backend, result = self._apply([ApplyParamInput("exposure", "5000"), ApplyParamInput("gain", "3")])
        assert backend.params == {"ExposureTime": "5000", "Gain": "3"}
        assert [row.actual_value for row in result.readback_rows] == ["5000", "3"]
        assert not result.unsupported

    def test_clamps_out_of_range(self):
        _, result = self._apply([ApplyParamInput("gain", "100")])
        applied = result.applied[0]
        assert applied.adjusted
        assert applied.applied_value == "48"
        assert "clamped from 100 to 48 (allowed range [0, 48])" == applied.adjustment_reason

    def test_enum_case_normalized(self):
        _, result = self._apply([ApplyParamInput("pixel_format", "MONO12")])
        assert result.applied[0].applied_value == "mono12"
        assert result.applied[0].adjustment_reason == "normalized enumeration value casing"

    def test_roi_ordering(self):
        backend, _ = self._apply([
            ApplyParamInput("roi_offset_x", "8"),
            ApplyParamInput("roi_width", "640"),
            ApplyParamInput("roi_height", "480"),
        ])
        assert list(backend.params) == ["Width", "Height", "OffsetX"]

    def test_strict_stops_on_unsupported(self):
        with pytest.raises(StrictApplyError) as exc_info:
            self._apply([
                ApplyParamInput("exposure", "5000"),
                ApplyParamInput("white_balance", "auto"),
                ApplyParamInput("gain", "1"),
            ], mode=ParamApplyMode.STRICT)
        result = exc_info.value.result
        assert "unsupported parameter 'white_balance'" in str(exc_info.value)
        assert [row.generic_key for row in result.readback_rows] == ["exposure", "white_balance"]

    def test_frame_rate_forced_best_effort(self):
        _, result = self._apply([ApplyParamInput("frame_rate", "fast")], mode=ParamApplyMode.STRICT)
        assert result.unsupported[0].reason == "expected floating-point value"

    def test_backend_rejection_recorded(self):
        backend = RecordingBackend(MockBackendConfig(fail_on={"set_param": "node locked"}))
        _, result = self._apply([ApplyParamInput("gain", "1")], backend=backend)
        assert result.unsupported[0].reason == "backend rejected mapped value: node locked"

    def test_transport_split(self):
        params = [ApplyParamInput("packet_size_bytes", "9000"), ApplyParamInput("gain", "1")]
        kept, skipped = split_transport_tuning(params, "usb")
        assert [p.generic_key for p in kept] == ["gain"]
        assert [p.generic_key for p in skipped] == ["packet_size_bytes"]
        assert split_transport_tuning(params, "GigE") == (params, [])

        _, result = self._apply(kept)
        append_skipped_transport_rows(result, skipped, "usb")
        assert result.unsupported[-1].reason == "setting requires GigE transport (resolved transport: usb)"


class TestErrorMapper:

    @pytest.mark.parametrize("detail,code", [
        ("real backend path is disabled at build time", RealErrorCode.SDK_UNAVAILABLE),
        ("Permission denied while opening camera", RealErrorCode.ACCESS_DENIED),
        ("device disconnected during acquisition", RealErrorCode.DEVICE_DISCONNECTED),
        ("operation timed out", RealErrorCode.TIMEOUT),
        ("device is busy", RealErrorCode.DEVICE_BUSY),
        ("no device matched selector serial:X", RealErrorCode.DEVICE_NOT_FOUND),
        ("real backend stub is already connected", RealErrorCode.STATE_CONFLICT),
        ("value must be positive", RealErrorCode.INVALID_CONFIGURATION),
        ("", RealErrorCode.UNKNOWN),
        ("something odd", RealErrorCode.UNKNOWN),
    ])
    def test_classification(self, detail, code):
        assert map_real_failure("connect", detail).code is code

    def test_formatted_message(self):
        mapped = map_real_failure("connect", "  device   busy ")
        assert mapped.formatted_message == (
            "REAL_DEVICE_BUSY: Device is busy during connect; close other camera tools/processes "
            "and retry. detail: device busy"
        )

    def test_permission_denied_line(self):
        mapped = map_real_failure("connect", "Permission denied while opening camera")
        assert mapped.stable_code == "REAL_ACCESS_DENIED"
        assert mapped.formatted_message.startswith("REAL_ACCESS_DENIED: Access denied during connect")

    def test_stub_connection_text_maps_to_sdk_unavailable(self):
        assert map_real_failure("connect", build_connection_error()).code is RealErrorCode.SDK_UNAVAILABLE

    def test_path_disabled_wording_alone_is_not_sdk_unavailable(self):
        assert map_real_failure("connect", "real backend path is disabled").code is RealErrorCode.UNKNOWN

    @pytest.mark.parametrize("operation,detail", [
        ("connect", "  Permission   DENIED\twhile opening camera "),
        ("start", "device\n\ndisconnected  during acquisition"),
        ("pull_frames", "frame   wait timed\tout"),
        ("stop", "   "),
        ("", "No   camera matched selector serial:X"),
        ("set_param", "odd\r\ndetail   text"),
    ])
    def test_classification_ignores_whitespace_layout(self, operation, detail):
        collapsed = collapse_whitespace(detail)
        assert classify_detail(collapsed) is classify_detail(detail)
        mapped = map_real_failure(operation, detail)
        assert mapped.stable_code
        assert map_real_failure(operation, collapsed) == mapped


class TestReconnect:

    def test_disconnect_detection(self):
        assert is_likely_disconnect_error("Device DISCONNECTED")
        assert is_likely_disconnect_error("link down on eth0")
        assert not is_likely_disconnect_error("timeout")

    def test_remaining_attempts(self):
        assert compute_reconnect_attempts_remaining(3, 1) == 2
        assert compute_reconnect_attempts_remaining(3, 5) == 0

    def test_success_on_first_attempt(self, recording_backend):
        result = execute_reconnect_attempts(recording_backend, 3, 1)
        assert result.reconnected
        assert result.attempts_used_total == 2
        assert recording_backend.calls == ["connect", "start"]

    def test_exhausts_budget(self):
        backend = RecordingBackend(MockBackendConfig(fail_on={"connect": "device unavailable after disconnect"}))
        result = execute_reconnect_attempts(backend, 2, 0)
        assert not result.reconnected
        assert result.attempts_used_total == 2
        assert result.error.startswith("REAL_DEVICE_DISCONNECTED:")

    def test_zero_attempts_uses_sentinel(self, recording_backend):
        result = execute_reconnect_attempts(recording_backend, 0, 3)
        assert result.error == "reconnect attempts exhausted"
        assert result.attempts_used_total == 3

    def test_failed_start_triggers_stop(self):
        backend = RecordingBackend(MockBackendConfig(fail_on={"start": "stream busy"}))
        execute_reconnect_attempts(backend, 1, 0)
        assert backend.calls == ["connect", "start", "stop"]

    def test_recovers_after_connect_then_start_failures(self):
        backend = RecordingBackend(MockBackendConfig(fail_times={"connect": 1, "start": 1}))
        result = execute_reconnect_attempts(backend, 3, 1)
        assert result.reconnected
        assert result.attempts_used_total == 4
        assert result.error == ""
        assert backend.calls.count("connect") == 3
        assert backend.calls.count("start") == 2
        assert backend.calls.count("stop") == 1
        assert backend.calls == ["connect", "connect", "start", "stop", "connect", "start"]


class TestLifecycle:

    def test_happy_path_and_reconnect(self):
        lifecycle = BackendLifecycle()
        lifecycle.on_connected()
        lifecycle.on_started()
        lifecycle.on_disconnect()
        lifecycle.on_reconnect_result(ReconnectAttemptResult(reconnected=True))
        assert lifecycle.state is LifecycleState.STREAMING
        lifecycle.on_stopped()
        assert lifecycle.teardown() is LifecycleState.CLOSED

    def test_failed_is_terminal(self):
        lifecycle = BackendLifecycle()
        lifecycle.on_connected()
        lifecycle.on_started()
        lifecycle.on_disconnect()
        lifecycle.on_reconnect_result(ReconnectAttemptResult(reconnected=False))
        assert lifecycle.teardown() is LifecycleState.FAILED
        with pytest.raises(LifecycleError, match="failed -> streaming"):
            lifecycle.on_started()

    def test_illegal_transition(self):
        with pytest.raises(LifecycleError, match="closed -> streaming"):
            BackendLifecycle().on_started()


class TestTransportCounters:

    def test_aliases_case_insensitive(self):
        snapshot = collect_transport_counters({"GevResendPacketCount": "12", "transport.packet_errors": "x"})
        data = snapshot.to_dict()
        assert data["resends"] == {"available": True, "value": 12, "source_key": "GevResendPacketCount"}
        assert data["packet_errors"] == {"available": False}
        assert data["dropped_packets"] == {"available": False}


class TestSdkContext:

    def setup_method(self):
        SdkContext.debug_reset_for_tests()

    def teardown_method(self):
        SdkContext.debug_reset_for_tests()

    def test_refcounted_init_and_shutdown(self):
        first = SdkContext()
        second = SdkContext()
        first.acquire()
        second.acquire()
        first.acquire()
        snapshot = SdkContext.debug_snapshot()
        assert snapshot.initialized and snapshot.active_handles == 2 and snapshot.init_calls == 1
        first.release()
        second.release()
        snapshot = SdkContext.debug_snapshot()
        assert not snapshot.initialized
        assert snapshot.shutdown_calls == 1

    def test_context_manager(self):
        with SdkContext() as ctx:
            assert ctx.acquired
        assert SdkContext.debug_snapshot().active_handles == 0


SCRIPTED_DROPS = [
    FrameProviderSample(FrameOutcome.RECEIVED, 4000),
    FrameProviderSample(FrameOutcome.TIMEOUT),
    FrameProviderSample(FrameOutcome.INCOMPLETE, 700),
    FrameProviderSample(FrameOutcome.RECEIVED, 4096, stall_periods=3),
    FrameProviderSample(FrameOutcome.RECEIVED, 2048),
    FrameProviderSample(FrameOutcome.TIMEOUT),
]


class TestAcquisitionLoop:

    def _input(self, duration_ms=600, first_frame_id=0):
        return AcquisitionLoopInput(
            duration_ms=duration_ms,
            frame_rate_fps=10.0,
            default_frame_size_bytes=4096,
            stream_start=from_epoch_millis(1_700_000_000_000),
            first_frame_id=first_frame_id,
        )

    def test_scripted_drops_feed_metrics(self):
        provider = ScriptedFrameProvider(SCRIPTED_DROPS)
        result = run_acquisition_loop(provider, self._input())
        assert provider.next_index == len(SCRIPTED_DROPS)
        assert result.next_frame_id == 6
        assert result.counters.stall_periods_total == 3

        report = compute_fps_report(result.frames, 600)
        assert report.frames_total == 6
        assert report.received_frames_total == 3
        assert report.timeout_frames_total == 2
        assert report.incomplete_frames_total == 1
        assert report.dropped_generic_frames_total == 0
        assert report.dropped_frames_total == 3

        frames = result.frames
        assert frames[3].timestamp - frames[2].timestamp >= timedelta(milliseconds=400)
        assert all(b.timestamp > a.timestamp for a, b in zip(frames, frames[1:]))

    def test_outcome_normalization(self):
        frames = run_acquisition_loop(ScriptedFrameProvider(SCRIPTED_DROPS), self._input()).frames
        assert frames[1].is_dropped and frames[1].size_bytes == 0
        assert frames[2].is_dropped and frames[2].size_bytes == 700
        assert [f.size_bytes for f in frames if f.outcome is FrameOutcome.RECEIVED] == [4000, 4096, 2048]

    def test_defaults_fill_unset_sizes(self):
        script = [FrameProviderSample(FrameOutcome.RECEIVED), FrameProviderSample(FrameOutcome.INCOMPLETE)]
        frames = run_acquisition_loop(ScriptedFrameProvider(script), self._input(200)).frames
        assert [f.size_bytes for f in frames] == [4096, 1024]

    def test_frame_ids_continue_from_first_id(self):
        provider = ScriptedFrameProvider(SCRIPTED_DROPS)
        result = run_acquisition_loop(provider, self._input(300, first_frame_id=42))
        assert provider.requested_ids == [42, 43, 44]
        assert result.next_frame_id == 45

    def test_exhausted_provider_aborts(self):
        with pytest.raises(BackendError, match="frame script exhausted"):
            run_acquisition_loop(ScriptedFrameProvider(SCRIPTED_DROPS[:2]), self._input())

    def test_invalid_rate(self):
        bad = self._input()
        bad.frame_rate_fps = 0.0
        with pytest.raises(BackendError, match="positive finite frame_rate_fps"):
            run_acquisition_loop(ScriptedFrameProvider([]), bad)

    def test_deterministic_provider_matches_seeded_outcomes(self):
        provider = DeterministicFrameProvider(7, 4096, 10.0, 10.0)
        for frame_id in range(50):
            sample = provider.next_sample(frame_id)
            assert sample.outcome is determine_frame_outcome(7, frame_id, 10.0, 10.0)


class TestRealBackend:

    def _backend(self):
        backend = RealBackend(clock=FrozenClock.anchored(START, 0))
        backend.set_param("FrameTimeoutPercent", "0")
        backend.set_param("FrameIncompletePercent", "0")
        return backend

    def test_stream_frames(self):
        backend = self._backend()
        backend.connect()
        backend.start()
        frames = backend.pull_frames(1000)
        assert len(frames) == 30
        assert all(f.outcome is FrameOutcome.RECEIVED for f in frames)
        backend.stop()
        backend.close()

    def test_requires_connect(self):
        with pytest.raises(BackendError, match="cannot start before a successful connect"):
            self._backend().start()

    def test_stop_is_idempotent_when_closed(self):
        self._backend().stop()

    def test_scripted_provider_keeps_stalls_across_pulls(self):
        provider = ScriptedFrameProvider(SCRIPTED_DROPS)
        backend = RealBackend(clock=FrozenClock.anchored(START, 0), frame_provider=provider)
        backend.set_param("AcquisitionFrameRate", "10")
        backend.connect()
        backend.start()
        first = backend.pull_frames(300)
        second = backend.pull_frames(300)
        backend.close()
        assert [f.frame_id for f in first + second] == list(range(6))
        assert second[0].timestamp == START + timedelta(milliseconds=600)
        assert second[2].timestamp == START + timedelta(milliseconds=800)

    def test_timeouts_and_incomplete(self):
        backend = RealBackend(clock=FrozenClock.anchored(START, 0))
        backend.set_param("FrameTimeoutPercent", "100")
        backend.connect()
        backend.start()
        frames = backend.pull_frames(200)
        assert frames and all(f.outcome is FrameOutcome.TIMEOUT for f in frames)
        backend.close()

    def test_simulated_disconnect_latches(self, monkeypatch):
        monkeypatch.setenv("LABOPS_REAL_DISCONNECT_AFTER_PULLS", "2")
        backend = self._backend()
        backend.connect()
        backend.start()
        backend.pull_frames(100)
        with pytest.raises(BackendError, match="device disconnected during acquisition"):
            backend.pull_frames(100)
        with pytest.raises(BackendError, match="device unavailable after disconnect"):
            backend.connect()
        backend.close()

    def test_sdk_log_capture(self, tmp_path):
        log_path = tmp_path / "sdk_log.txt"
        backend = self._backend()
        backend.set_param(SDK_LOG_PARAM, str(log_path))
        backend.connect()
        backend.close()
        lines = log_path.read_text(encoding="utf-8").splitlines()
        assert lines[0] == "sdk_log_capture=enabled backend=real"
        assert "connect status=success" in lines


class TestRealStub:

    def test_connect_fails_with_hint(self):
        with pytest.raises(BackendNotAvailableError, match="set LABOPS_REAL_BACKEND=1"):
            RealCameraBackendStub().connect()

    def test_connect_fails_when_enabled(self, real_enabled):
        with pytest.raises(BackendError, match="no proprietary SDK adapter") as exc_info:
            RealCameraBackendStub().connect()
        assert not isinstance(exc_info.value, BackendNotAvailableError)

    def test_accepts_params(self):
        stub = RealCameraBackendStub()
        stub.set_param("ExposureTime", "100")
        assert stub.dump_config()["ExposureTime"] == "100"
        assert stub.dump_config()["build_real_backend_enabled"] == "false"
