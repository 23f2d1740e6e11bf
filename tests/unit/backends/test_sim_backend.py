"""Unit tests for the deterministic simulated camera."""

from datetime import datetime, timezone

import pytest

from labops.backends import create_backend, list_backend_statuses
from labops.backends.base import FrameOutcome
from labops.backends.real_sdk import RealBackend, RealCameraBackendStub
from labops.backends.sim import (
    SimCameraBackend,
    SimScenarioConfig,
    apply_scenario_config,
    deterministic_jitter_us,
    deterministic_percent_hit,
)
from labops.core.errors import BackendError
from tests.infrastructure.mocks.backend_mocks import FrozenClock

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def sim():
    backend = SimCameraBackend(clock=FrozenClock.anchored(START, 0))
    backend.connect()
    return backend


def started(backend, **params):
    for key, value in params.items():
        backend.set_param(key, str(value))
    backend.start()
    return backend


class TestSimLifecycle:
    """connect/start/stop ordering."""

    def test_start_requires_connect(self):
        with pytest.raises(BackendError, match="must be connected before start"):
            SimCameraBackend().start()

    def test_double_connect(self, sim):
        with pytest.raises(BackendError, match="already connected"):
            sim.connect()

    def test_pull_requires_running(self, sim):
        with pytest.raises(BackendError) as exc_info:
            sim.pull_frames(100)
        assert exc_info.value.operation == "pull_frames"

    def test_stop_when_not_running(self, sim):
        with pytest.raises(BackendError, match="not running"):
            sim.stop()

    def test_dump_config_reports_state(self, sim):
        config = sim.dump_config()
        assert config["backend"] == "sim"
        assert config["connected"] == "true"
        assert config["running"] == "false"

    def test_empty_param_rejected(self, sim):
        with pytest.raises(BackendError, match="parameter value cannot be empty"):
            sim.set_param("fps", "")


class TestSimFrames:
    """Frame generation and fault injection."""

    def test_frame_count_and_spacing(self, sim):
        frames = started(sim, fps=10, frame_size_bytes=100).pull_frames(1000)
        assert len(frames) == 10
        assert [f.frame_id for f in frames] == list(range(10))
        assert (frames[1].timestamp - frames[0].timestamp).total_seconds() == pytest.approx(0.1)
        assert all(f.size_bytes == 100 and not f.is_dropped for f in frames)

    def test_ids_continue_across_pulls(self, sim):
        started(sim, fps=20)
        first = sim.pull_frames(500)
        second = sim.pull_frames(500)
        assert first[-1].frame_id + 1 == second[0].frame_id
        assert second[0].timestamp > first[-1].timestamp

    def test_zero_duration(self, sim):
        assert started(sim).pull_frames(0) == []

    def test_negative_duration(self, sim):
        with pytest.raises(BackendError, match="cannot be negative"):
            started(sim).pull_frames(-1)

    def test_drop_every_n(self, sim):
        frames = started(sim, fps=10, drop_every_n=5).pull_frames(1000)
        dropped = [f.frame_id for f in frames if f.is_dropped]
        assert dropped == [4, 9]
        assert all(f.outcome is FrameOutcome.DROPPED for f in frames if f.is_dropped)

    def test_burst_drop_extends_drops(self, sim):
        frames = started(sim, fps=10, drop_every_n=5, burst_drop=2).pull_frames(1000)
        dropped = [f.frame_id for f in frames if f.is_dropped]
        assert dropped == [4, 5, 9]

    def test_drop_percent_full(self, sim):
        frames = started(sim, fps=10, drop_percent=100).pull_frames(1000)
        assert all(f.is_dropped for f in frames)

    def test_deterministic_for_seed(self):
        def run(seed):
            backend = SimCameraBackend(clock=FrozenClock.anchored(START, 0))
            backend.connect()
            return [(f.frame_id, f.timestamp, f.is_dropped)
                    for f in started(backend, fps=30, seed=seed, jitter_us=500, drop_percent=20).pull_frames(1000)]
        assert run(7) == run(7)
        assert run(7) != run(8)

    def test_reorder_permutes_within_window(self, sim):
        frames = started(sim, fps=30, reorder=4, seed=3).pull_frames(1000)
        ids = [f.frame_id for f in frames]
        assert sorted(ids) == list(range(30))
        for start in range(0, 28, 4):
            assert sorted(ids[start:start + 4]) == list(range(start, start + 4))

    def test_invalid_param_value(self, sim):
        with pytest.raises(BackendError, match="invalid fps parameter value: 0"):
            started(sim, fps=0).pull_frames(100)


class TestSimHelpers:

    def test_jitter_bounds(self):
        values = [deterministic_jitter_us(1, i, 50) for i in range(200)]
        assert all(-50 <= v <= 50 for v in values)
        assert deterministic_jitter_us(1, 5, 0) == 0

    def test_percent_hit_edges(self):
        assert not deterministic_percent_hit(1, 1, 0)
        assert deterministic_percent_hit(1, 1, 100)

    def test_apply_scenario_config_pushes_all_knobs(self, recording_backend):
        applied = apply_scenario_config(recording_backend, SimScenarioConfig(fps=15, seed=9))
        assert applied["fps"] == "15"
        assert recording_backend.params["seed"] == "9"
        assert set(applied) == set(recording_backend.params)

    def test_apply_scenario_config_rejects_percent(self, recording_backend):
        with pytest.raises(BackendError):
            apply_scenario_config(recording_backend, SimScenarioConfig(drop_percent=101))


class TestBackendFactory:

    def test_names(self, monkeypatch):
        assert isinstance(create_backend("sim"), SimCameraBackend)
        assert isinstance(create_backend("real_stub"), RealCameraBackendStub)
        monkeypatch.setenv("LABOPS_REAL_BACKEND", "1")
        assert isinstance(create_backend("real_stub"), RealBackend)

    def test_unknown(self):
        with pytest.raises(BackendError, match="unsupported backend"):
            create_backend("gpu")

    def test_statuses(self):
        rows = list_backend_statuses()
        assert [name for name, _, _ in rows] == ["sim", "webcam", "real"]
        assert rows[0] == ("sim", True, "enabled")
        assert rows[2] == ("real", False, "disabled (SDK not found)")

    def test_run_clock_anchors_stream_start(self):
        backend = create_backend("sim", clock=FrozenClock.anchored(START, 0))
        backend.connect()
        backend.start()
        frames = backend.pull_frames(100)
        assert frames[0].timestamp == START
