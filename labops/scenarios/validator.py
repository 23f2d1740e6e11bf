"""Strict schema check behind ``labops validate``.

Unlike the runtime model, every problem is collected rather than stopping at
the first one, and each issue names the JSON path it applies to so the
operator can fix the file in one pass.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from labops.backends.real_sdk.device_discovery import parse_device_selector
from labops.core.errors import JsonParseError, ScenarioError, SelectorError
from labops.core.json_parser import parse_json
from labops.scenarios.model import SCENARIO_BACKENDS, as_non_negative_integer, is_lowercase_slug

NETEM_PROFILE_DIR = Path("tools") / "netem_profiles"
_PARSE_HINT = " (fix JSON syntax and rerun 'labops validate <scenario.json>')"


@dataclass
class ValidationIssue:
    path: str
    message: str


@dataclass
class ValidationReport:
    valid: bool = False
    issues: List[ValidationIssue] = field(default_factory=list)

    def add(self, path: str, message: str) -> None:
        self.issues.append(ValidationIssue(path, message))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _positive_int(value: Any) -> bool:
    parsed = as_non_negative_integer(value)
    return parsed is not None and parsed > 0


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def resolve_netem_profile_path(scenario_path: Union[str, Path], profile_id: str) -> Optional[Path]:
    """Walk up from the scenario's folder looking for ``tools/netem_profiles/<id>.json``."""
    if not str(scenario_path) or not profile_id:
        return None
    cursor = Path(scenario_path).absolute().parent
    while True:
        candidate = cursor / NETEM_PROFILE_DIR / f"{profile_id}.json"
        if candidate.is_file():
            return candidate
        if cursor.parent == cursor:
            return None
        cursor = cursor.parent


class _ScenarioValidator:
    def __init__(self, root: Dict[str, Any], scenario_path: Optional[Path], report: ValidationReport) -> None:
        self.root = root
        self.scenario_path = scenario_path
        self.report = report

    def run(self) -> None:
        self._required_string("schema_version", 'example: "1.0"')
        self._required_string("scenario_id", 'example: "stream_baseline_1080p"')
        scenario_id = self.root.get("scenario_id")
        if _non_empty_string(scenario_id) and not is_lowercase_slug(scenario_id):
            self.report.add("scenario_id", "must use lowercase slug format [a-z0-9_-]+")
        if "description" in self.root and not isinstance(self.root["description"], str):
            self.report.add("description", "must be a string")

        self._tags()
        self._duration()
        self._camera()
        self._sim_faults()
        self._thresholds()
        self._metrics()
        self._oaat()
        self._apply_mode()
        self._netem_profile()
        self._backend()
        self._device_selector()
        self._webcam()

    def _required_string(self, key: str, hint: str) -> None:
        if key not in self.root:
            self.report.add(key, f"is required; {hint}")
        elif not isinstance(self.root[key], str):
            self.report.add(key, "must be a string")
        elif not self.root[key]:
            self.report.add(key, "must not be empty")

    def _tags(self) -> None:
        if "tags" not in self.root:
            return
        tags = self.root["tags"]
        if not isinstance(tags, list):
            self.report.add("tags", "must be an array of non-empty strings")
            return
        for i, tag in enumerate(tags):
            if not _non_empty_string(tag):
                self.report.add(f"tags[{i}]", "must be a non-empty string")

    def _duration(self) -> None:
        if "duration" not in self.root:
            self.report.add("duration", "is required and must include duration.duration_ms")
            return
        duration = self.root["duration"]
        if not isinstance(duration, dict):
            self.report.add("duration", "must be an object with duration_ms")
            return
        if "duration_ms" not in duration:
            self.report.add("duration.duration_ms", "is required and must be > 0")
            return
        parsed = as_non_negative_integer(duration["duration_ms"])
        if parsed is None:
            self.report.add("duration.duration_ms", "must be a positive integer (milliseconds)")
        elif parsed == 0:
            self.report.add("duration.duration_ms", "must be greater than 0")

    def _one_of(self, obj: Dict[str, Any], key: str, path: str, allowed: List[str]) -> None:
        if key not in obj:
            return
        value = obj[key]
        if not isinstance(value, str):
            self.report.add(path, "must be a string")
        elif value not in allowed:
            self.report.add(path, "must be one of: " + ", ".join(allowed))

    def _camera(self) -> None:
        if "camera" not in self.root:
            self.report.add("camera", "is required")
            return
        camera = self.root["camera"]
        if not isinstance(camera, dict):
            self.report.add("camera", "must be an object")
            return

        for key in ("fps", "width", "height"):
            if key in camera and not _positive_int(camera[key]):
                self.report.add(f"camera.{key}", "must be a positive integer")
        if "exposure_us" in camera and as_non_negative_integer(camera["exposure_us"]) is None:
            self.report.add("camera.exposure_us", "must be a non-negative integer")

        self._one_of(camera, "trigger_mode", "camera.trigger_mode", ["free_run", "software", "hardware"])
        self._one_of(camera, "trigger_source", "camera.trigger_source", ["line0", "line1", "software"])
        self._one_of(
            camera, "trigger_activation", "camera.trigger_activation",
            ["rising_edge", "falling_edge", "any_edge"],
        )

        if "roi" in camera:
            roi = camera["roi"]
            if not isinstance(roi, dict):
                self.report.add("camera.roi", "must be an object")
            else:
                for key, positive in (("x", False), ("y", False), ("width", True), ("height", True)):
                    path = f"camera.roi.{key}"
                    if key not in roi:
                        self.report.add(path, "is required when roi is present")
                    elif positive and not _positive_int(roi[key]):
                        self.report.add(path, "must be a positive integer")
                    elif not positive and as_non_negative_integer(roi[key]) is None:
                        self.report.add(path, "must be a non-negative integer")

        if "network" in camera:
            network = camera["network"]
            if not isinstance(network, dict):
                self.report.add("camera.network", "must be an object")
                return
            if "packet_size_bytes" in network and not _positive_int(network["packet_size_bytes"]):
                self.report.add("camera.network.packet_size_bytes", "must be a positive integer")
            if ("inter_packet_delay_us" in network
                    and as_non_negative_integer(network["inter_packet_delay_us"]) is None):
                self.report.add("camera.network.inter_packet_delay_us", "must be a non-negative integer")

    def _sim_faults(self) -> None:
        if "sim_faults" not in self.root:
            return
        faults = self.root["sim_faults"]
        if not isinstance(faults, dict):
            self.report.add("sim_faults", "must be an object")
            return
        for key in ("seed", "jitter_us", "drop_every_n", "burst_drop", "reorder",
                    "disconnect_at_ms", "disconnect_duration_ms"):
            if key in faults and as_non_negative_integer(faults[key]) is None:
                self.report.add(f"sim_faults.{key}", "must be a non-negative integer")
        if "drop_percent" in faults:
            parsed = as_non_negative_integer(faults["drop_percent"])
            if parsed is None:
                self.report.add("sim_faults.drop_percent", "must be an integer in range [0,100]")
            elif parsed > 100:
                self.report.add("sim_faults.drop_percent", "must be in range [0,100]")

    def _thresholds(self) -> None:
        if "thresholds" not in self.root:
            self.report.add("thresholds", "is required")
            return
        thresholds = self.root["thresholds"]
        if not isinstance(thresholds, dict):
            self.report.add("thresholds", "must be an object")
            return

        has_known = False
        for key, percent in (
            ("min_avg_fps", False),
            ("max_drop_rate_percent", True),
            ("max_inter_frame_interval_p95_us", False),
            ("max_inter_frame_jitter_p95_us", False),
        ):
            if key not in thresholds:
                continue
            has_known = True
            value = thresholds[key]
            if not _is_number(value) or not math.isfinite(value) or value < 0:
                self.report.add(f"thresholds.{key}", "must be a non-negative number")
            elif percent and value > 100:
                self.report.add(f"thresholds.{key}", "must be in range [0,100]")
        if "max_disconnect_count" in thresholds:
            has_known = True
            if as_non_negative_integer(thresholds["max_disconnect_count"]) is None:
                self.report.add("thresholds.max_disconnect_count", "must be a non-negative integer")

        if not has_known:
            self.report.add("thresholds", "must include at least one threshold (e.g. max_drop_rate_percent)")

    def _metrics(self) -> None:
        if "metrics" not in self.root:
            return
        metrics = self.root["metrics"]
        if not isinstance(metrics, dict):
            self.report.add("metrics", "must be an object")
            return
        for key in ("rolling_window_ms", "rolling_step_ms"):
            if key in metrics and not _positive_int(metrics[key]):
                self.report.add(f"metrics.{key}", "must be a positive integer (milliseconds)")
        window = metrics.get("rolling_window_ms")
        step = metrics.get("rolling_step_ms")
        if _positive_int(window) and _positive_int(step) and step > window:
            self.report.add("metrics.rolling_step_ms", "must not exceed metrics.rolling_window_ms")

    def _oaat(self) -> None:
        if "oaat" not in self.root:
            return
        oaat = self.root["oaat"]
        if not isinstance(oaat, dict):
            self.report.add("oaat", "must be an object")
            return
        if "enabled" not in oaat:
            self.report.add("oaat.enabled", "is required when oaat is present")
            return
        enabled = oaat["enabled"]
        if not isinstance(enabled, bool):
            self.report.add("oaat.enabled", "must be a boolean")
            return
        if "max_trials" in oaat and not _positive_int(oaat["max_trials"]):
            self.report.add("oaat.max_trials", "must be a positive integer")
        if "stop_on_first_failure" in oaat and not isinstance(oaat["stop_on_first_failure"], bool):
            self.report.add("oaat.stop_on_first_failure", "must be a boolean")

        variables = oaat.get("variables")
        if enabled and (not isinstance(variables, list) or not variables):
            self.report.add("oaat.variables", "must contain at least one variable when oaat.enabled=true")
            return
        if "variables" not in oaat:
            return
        if not isinstance(variables, list):
            self.report.add("oaat.variables", "must be an array")
            return

        for i, variable in enumerate(variables):
            base = f"oaat.variables[{i}]"
            if not isinstance(variable, dict):
                self.report.add(base, "must be an object")
                continue
            if not _non_empty_string(variable.get("path")):
                self.report.add(f"{base}.path", "is required and must be a non-empty string")
            values = variable.get("values")
            if not isinstance(values, list) or not values:
                self.report.add(f"{base}.values", "is required and must be a non-empty array")
            if "mode" in variable:
                if not isinstance(variable["mode"], str):
                    self.report.add(f"{base}.mode", "must be a string when provided")
                elif variable["mode"] != "replace":
                    self.report.add(f"{base}.mode", "must be 'replace' in current schema")

    def _apply_mode(self) -> None:
        if "apply_mode" not in self.root:
            return
        value = self.root["apply_mode"]
        if not isinstance(value, str):
            self.report.add("apply_mode", "must be a string when provided")
            return
        normalized = value.strip().lower()
        if not normalized:
            self.report.add("apply_mode", "must not be empty when provided")
        elif normalized not in ("strict", "best_effort", "best-effort"):
            self.report.add("apply_mode", "must be one of: strict, best_effort")

    def _netem_profile(self) -> None:
        if "netem_profile" not in self.root:
            return
        profile = self.root["netem_profile"]
        if not isinstance(profile, str):
            self.report.add("netem_profile", "must be a string profile id")
        elif not profile:
            self.report.add("netem_profile", "must not be empty when provided")
        elif not is_lowercase_slug(profile):
            self.report.add("netem_profile", "must use lowercase slug format [a-z0-9_-]+")
        elif self.scenario_path is not None and resolve_netem_profile_path(self.scenario_path, profile) is None:
            self.report.add(
                "netem_profile",
                f"profile '{profile}' was not found under tools/netem_profiles/<profile>.json",
            )

    def _backend(self) -> None:
        if "backend" not in self.root:
            return
        backend = self.root["backend"]
        if not isinstance(backend, str):
            self.report.add("backend", "must be a string when provided")
        elif not backend:
            self.report.add("backend", "must not be empty when provided")
        elif backend not in SCENARIO_BACKENDS:
            self.report.add("backend", "must be one of: sim, webcam, real_stub")

    def _device_selector(self) -> None:
        if "device_selector" not in self.root:
            return
        selector = self.root["device_selector"]
        if not isinstance(selector, str):
            self.report.add("device_selector", "must be a string when provided")
            return
        text = selector.strip()
        if not text:
            self.report.add("device_selector", "must not be empty when provided")
            return
        try:
            parse_device_selector(text)
        except SelectorError as e:
            self.report.add("device_selector", str(e))
            return
        backend = self.root.get("backend")
        if not _non_empty_string(backend):
            backend = "sim"
        if backend != "real_stub":
            self.report.add("device_selector", 'requires backend to be "real_stub"')

    def _webcam(self) -> None:
        if "webcam" not in self.root:
            return
        webcam = self.root["webcam"]
        if not isinstance(webcam, dict):
            self.report.add("webcam", "must be an object when provided")
            return
        for key in ("requested_width", "requested_height"):
            if key in webcam and not _positive_int(webcam[key]):
                self.report.add(f"webcam.{key}", "must be a positive integer")
        if "requested_fps" in webcam:
            fps = webcam["requested_fps"]
            if not _is_number(fps) or not math.isfinite(fps) or fps <= 0:
                self.report.add("webcam.requested_fps", "must be a positive number")
        if "requested_pixel_format" in webcam and not _non_empty_string(webcam["requested_pixel_format"]):
            self.report.add("webcam.requested_pixel_format", "must be a non-empty string")

        if "device_selector" not in webcam:
            return
        selector = webcam["device_selector"]
        if not isinstance(selector, dict):
            self.report.add("webcam.device_selector", "must be an object when provided")
            return
        has_key = False
        if "index" in selector:
            has_key = True
            if as_non_negative_integer(selector["index"]) is None:
                self.report.add("webcam.device_selector.index", "must be a non-negative integer")
        for key in ("id", "name_contains"):
            if key in selector:
                has_key = True
                if not _non_empty_string(selector[key]):
                    self.report.add(f"webcam.device_selector.{key}", "must be a non-empty string")
        if not has_key:
            self.report.add(
                "webcam.device_selector",
                "must include at least one selector key: index, id, or name_contains",
            )


def validate_scenario_text(text: str, scenario_path: Optional[Union[str, Path]] = None) -> ValidationReport:
    """Validate scenario JSON text; parse failures become a ``$`` issue.

    ``scenario_path`` anchors the netem profile lookup; without it profile
    existence is not checked.
    """
    report = ValidationReport()
    try:
        root = parse_json(text)
    except JsonParseError as e:
        report.add("$", f"{e}{_PARSE_HINT}")
        return report

    if not isinstance(root, dict):
        report.add("$", "root JSON value must be an object")
        return report
    _ScenarioValidator(root, Path(scenario_path) if scenario_path else None, report).run()
    report.valid = not report.issues
    return report


def validate_scenario_file(scenario_path: Union[str, Path]) -> ValidationReport:
    """Raises ``ScenarioError`` only when the file cannot be read."""
    path = Path(scenario_path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ScenarioError(f"unable to read scenario file: {scenario_path}") from e
    if not text:
        report = ValidationReport()
        report.add("$", "scenario file is empty; provide a valid JSON object")
        return report
    return validate_scenario_text(text, path)


__all__ = [
    "ValidationIssue",
    "ValidationReport",
    "resolve_netem_profile_path",
    "validate_scenario_file",
    "validate_scenario_text",
]
