"""Unit tests for strict scenario validation."""

import pytest

from labops.core.errors import ScenarioError
from labops.scenarios import validate_scenario_file, validate_scenario_text
from labops.scenarios.validator import resolve_netem_profile_path


def issue_paths(report):
    return [issue.path for issue in report.issues]


class TestValidateScenarioText:

    def test_base_scenario_valid(self, base_scenario):
        import json
        report = validate_scenario_text(json.dumps(base_scenario))
        assert report.valid
        assert report.issues == []

    def test_missing_required_fields_all_reported(self):
        report = validate_scenario_text("{}")
        assert not report.valid
        assert issue_paths(report) == ["schema_version", "scenario_id", "duration", "camera", "thresholds"]

    def test_parse_error_gets_hint(self):
        report = validate_scenario_text("{")
        assert issue_paths(report) == ["$"]
        assert report.issues[0].message.endswith("(fix JSON syntax and rerun 'labops validate <scenario.json>')")

    def test_non_object_root(self):
        report = validate_scenario_text("[1]")
        assert report.issues[0].message == "root JSON value must be an object"

    def test_scenario_id_slug(self, base_scenario):
        import json
        base_scenario["scenario_id"] = "Has Spaces"
        report = validate_scenario_text(json.dumps(base_scenario))
        assert "scenario_id" in issue_paths(report)

    def test_thresholds_need_a_known_key(self, base_scenario):
        import json
        base_scenario["thresholds"] = {"unrelated": 1}
        report = validate_scenario_text(json.dumps(base_scenario))
        assert report.issues[-1].path == "thresholds"
        assert "at least one threshold" in report.issues[-1].message

    def test_nested_errors_carry_paths(self, base_scenario):
        import json
        base_scenario["camera"] = {
            "fps": 0,
            "trigger_mode": "sometimes",
            "roi": {"x": 0, "width": 10, "height": -1},
            "network": {"packet_size_bytes": 0},
        }
        base_scenario["sim_faults"] = {"drop_percent": 150}
        report = validate_scenario_text(json.dumps(base_scenario))
        paths = issue_paths(report)
        for expected in (
            "camera.fps",
            "camera.trigger_mode",
            "camera.roi.y",
            "camera.roi.height",
            "camera.network.packet_size_bytes",
            "sim_faults.drop_percent",
        ):
            assert expected in paths

    def test_device_selector_requires_real_stub(self, base_scenario):
        import json
        base_scenario["device_selector"] = "serial:ABC123"
        report = validate_scenario_text(json.dumps(base_scenario))
        assert report.issues[-1].message == 'requires backend to be "real_stub"'
        base_scenario["backend"] = "real_stub"
        assert validate_scenario_text(json.dumps(base_scenario)).valid

    def test_oaat_requires_variables_when_enabled(self, base_scenario):
        import json
        base_scenario["oaat"] = {"enabled": True}
        report = validate_scenario_text(json.dumps(base_scenario))
        assert "oaat.variables" in issue_paths(report)

    def test_webcam_selector_needs_key(self, base_scenario):
        import json
        base_scenario["backend"] = "webcam"
        base_scenario["webcam"] = {"device_selector": {}}
        report = validate_scenario_text(json.dumps(base_scenario))
        assert "webcam.device_selector" in issue_paths(report)


class TestValidateScenarioFile:

    def test_unreadable_file_raises(self, tmp_path):
        with pytest.raises(ScenarioError, match="unable to read scenario file"):
            validate_scenario_file(tmp_path / "nope.json")

    def test_empty_file_issue(self, write_scenario):
        report = validate_scenario_file(write_scenario(""))
        assert report.issues[0].path == "$"
        assert "empty" in report.issues[0].message

    def test_netem_profile_lookup_walks_up(self, tmp_path, base_scenario, write_scenario):
        profiles = tmp_path / "tools" / "netem_profiles"
        profiles.mkdir(parents=True)
        (profiles / "lossy.json").write_text("{}", encoding="utf-8")
        nested = tmp_path / "scenarios" / "deep"
        nested.mkdir(parents=True)
        scenario_path = nested / "s.json"
        scenario_path.write_text("{}", encoding="utf-8")

        assert resolve_netem_profile_path(scenario_path, "lossy") == profiles / "lossy.json"
        assert resolve_netem_profile_path(scenario_path, "absent") is None

    def test_missing_netem_profile_reported(self, base_scenario, write_scenario):
        base_scenario["netem_profile"] = "definitely_not_present_profile"
        report = validate_scenario_file(write_scenario(base_scenario))
        assert not report.valid
        assert issue_paths(report) == ["netem_profile"]


class TestMetricsSection:

    def validate(self, base_scenario, metrics):
        import json
        base_scenario["metrics"] = metrics
        return validate_scenario_text(json.dumps(base_scenario))

    def test_valid_window_and_step(self, base_scenario):
        assert self.validate(base_scenario, {"rolling_window_ms": 500, "rolling_step_ms": 250}).valid

    def test_metrics_must_be_object(self, base_scenario):
        report = self.validate(base_scenario, [500])
        assert report.issues[-1].path == "metrics"
        assert report.issues[-1].message == "must be an object"

    @pytest.mark.parametrize("value", [0, -10, 1.5, "500"])
    def test_window_must_be_positive_integer(self, base_scenario, value):
        report = self.validate(base_scenario, {"rolling_window_ms": value})
        assert "metrics.rolling_window_ms" in issue_paths(report)

    def test_step_cannot_exceed_window(self, base_scenario):
        report = self.validate(base_scenario, {"rolling_window_ms": 500, "rolling_step_ms": 800})
        assert report.issues[-1].path == "metrics.rolling_step_ms"
        assert report.issues[-1].message == "must not exceed metrics.rolling_window_ms"
