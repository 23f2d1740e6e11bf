"""Unit tests for the lenient scenario model and run-plan construction."""

import pytest

from labops.backends.real_sdk.apply_params import ParamApplyMode
from labops.core.errors import ScenarioError
from labops.scenarios import build_run_plan, load_run_plan, parse_scenario_model_text


def plan_from(text: str):
    return build_run_plan(parse_scenario_model_text(text))


class TestScenarioParsing:
    """parse_scenario_model_text."""

    def test_invalid_json_wrapped(self):
        with pytest.raises(ScenarioError, match="^invalid scenario JSON: parse error at line 1"):
            parse_scenario_model_text("{")

    def test_root_must_be_object(self):
        with pytest.raises(ScenarioError, match="scenario root must be a JSON object"):
            parse_scenario_model_text("[]")

    def test_wrong_types_treated_as_absent(self):
        model = parse_scenario_model_text('{"camera": {"fps": "thirty"}, "backend": 3}')
        assert model.camera.fps is None
        assert model.backend is None

    def test_canonical_path_wins_over_legacy(self):
        model = parse_scenario_model_text('{"camera": {"fps": 60}, "fps": 15}')
        assert model.camera.fps == 60

    def test_legacy_flat_keys(self):
        model = parse_scenario_model_text('{"fps": 15, "drop_every_n": 4, "duration_ms": 500}')
        assert model.camera.fps == 15
        assert model.sim_faults.drop_every_n == 4
        assert model.duration_ms == 500

    def test_partial_roi_rejected(self):
        with pytest.raises(ScenarioError, match="camera.roi must include x, y, width, and height"):
            parse_scenario_model_text('{"camera": {"roi": {"x": 0, "y": 0, "width": 10}}}')


class TestRunPlan:
    """build_run_plan defaults, ranges and cross-field rules."""

    def test_defaults(self):
        plan = plan_from("{}")
        assert plan.duration_ms == 1000
        assert plan.backend == "sim"
        assert plan.real_apply_mode is ParamApplyMode.STRICT
        assert plan.thresholds.is_empty()

    def test_duration_seconds_fallback(self):
        assert plan_from('{"duration": {"duration_s": 3}}').duration_ms == 3000

    def test_zero_duration_rejected(self):
        with pytest.raises(ScenarioError, match="duration_ms must be greater than 0"):
            plan_from('{"duration": {"duration_ms": 0}}')

    def test_unknown_backend(self):
        with pytest.raises(ScenarioError, match="must be one of: sim, webcam, real_stub"):
            plan_from('{"backend": "gpu"}')

    def test_drop_percent_range(self):
        with pytest.raises(ScenarioError, match="out of range for key: drop_percent"):
            plan_from('{"sim_faults": {"drop_percent": 101}}')

    def test_sim_config_from_faults(self):
        plan = plan_from('{"camera": {"fps": 25}, "sim_faults": {"seed": 7, "jitter_us": 100, "reorder": 3}}')
        assert plan.sim_config.fps == 25
        assert plan.sim_config.seed == 7
        assert plan.sim_config.jitter_us == 100
        assert plan.sim_config.reorder == 3

    def test_real_params_order_roi_width_first(self):
        plan = plan_from(
            '{"camera": {"fps": 30, "exposure_us": 5000, "gain_db": 2.5,'
            ' "roi": {"x": 4, "y": 8, "width": 640, "height": 480}}}'
        )
        keys = [p.generic_key for p in plan.real_params]
        assert keys == [
            "frame_rate", "exposure", "gain",
            "roi_width", "roi_height", "roi_offset_x", "roi_offset_y",
        ]
        values = {p.generic_key: p.requested_value for p in plan.real_params}
        assert values["gain"] == "2.5"
        assert values["frame_rate"] == "30"

    def test_webcam_params(self):
        plan = plan_from(
            '{"backend": "webcam", "webcam": {"requested_width": 1280, "requested_fps": 30,'
            ' "requested_pixel_format": "MJPG"}}'
        )
        assert plan.webcam_params == {
            "webcam.requested_width": "1280",
            "webcam.requested_fps": "30",
            "webcam.requested_pixel_format": "MJPG",
        }

    def test_threshold_percent_range(self):
        with pytest.raises(ScenarioError, match=r"range \[0,100\] for key: max_drop_rate_percent"):
            plan_from('{"thresholds": {"max_drop_rate_percent": 150}}')

    def test_disconnect_threshold_must_be_integer(self):
        with pytest.raises(ScenarioError, match="non-negative integer for key: max_disconnect_count"):
            plan_from('{"thresholds": {"max_disconnect_count": 1.5}}')

    def test_netem_profile_slug(self):
        with pytest.raises(ScenarioError, match="lowercase slug"):
            plan_from('{"netem_profile": "Bad Profile"}')
        assert plan_from('{"netem_profile": "loss-1pct"}').netem_profile == "loss-1pct"

    def test_device_selector_requires_real_stub(self):
        with pytest.raises(ScenarioError, match="device_selector requires backend real_stub"):
            plan_from('{"device_selector": "serial:ABC"}')

    def test_invalid_device_selector_text(self):
        with pytest.raises(ScenarioError, match="invalid scenario device_selector 'color:red'"):
            plan_from('{"backend": "real_stub", "device_selector": "color:red"}')

    def test_webcam_selector_requires_webcam_backend(self):
        with pytest.raises(ScenarioError, match="webcam.device_selector requires backend webcam"):
            plan_from('{"webcam": {"device_selector": {"index": 1}}}')

    def test_apply_mode_best_effort(self):
        plan = plan_from('{"apply_mode": "best-effort"}')
        assert plan.real_apply_mode is ParamApplyMode.BEST_EFFORT

    def test_load_run_plan_uses_file_stem(self, write_scenario, base_scenario):
        path = write_scenario(base_scenario, name="throughput_check.json")
        plan = load_run_plan(path)
        assert plan.scenario_id == "throughput_check"
        assert plan.duration_ms == 2000
        assert plan.thresholds.min_avg_fps == 25

    def test_load_run_plan_unreadable(self, tmp_path):
        with pytest.raises(ScenarioError, match="unable to read scenario file"):
            load_run_plan(tmp_path / "missing.json")


class TestRollingMetricsPlan:
    """metrics.rolling_window_ms / metrics.rolling_step_ms."""

    def test_defaults(self):
        plan = plan_from("{}")
        assert plan.rolling_window_ms == 1000
        assert plan.rolling_step_ms == 200

    def test_explicit_values(self):
        plan = plan_from('{"metrics": {"rolling_window_ms": 500, "rolling_step_ms": 250}}')
        assert (plan.rolling_window_ms, plan.rolling_step_ms) == (500, 250)

    def test_short_window_caps_default_step(self):
        plan = plan_from('{"metrics": {"rolling_window_ms": 100}}')
        assert (plan.rolling_window_ms, plan.rolling_step_ms) == (100, 100)

    def test_zero_window_rejected(self):
        with pytest.raises(ScenarioError, match="metrics.rolling_window_ms must be greater than 0"):
            plan_from('{"metrics": {"rolling_window_ms": 0}}')

    def test_step_larger_than_window_rejected(self):
        with pytest.raises(ScenarioError, match="rolling_step_ms must not exceed metrics.rolling_window_ms"):
            plan_from('{"metrics": {"rolling_window_ms": 500, "rolling_step_ms": 800}}')
