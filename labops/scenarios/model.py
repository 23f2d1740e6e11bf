"""Runtime scenario model and the run plan derived from it.

Parsing here is lenient: every field is optional and a field with the wrong
JSON type is treated as absent. Canonical nested paths win over the legacy
flat keys older fixtures still use. Range checks happen when the model is
turned into a ``RunPlan``; the strict schema check lives in
``labops.scenarios.validator``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from labops.backends import BACKEND_REAL_STUB, BACKEND_WEBCAM, SCENARIO_BACKENDS
from labops.backends.real_sdk.apply_params import (
    ApplyParamInput,
    ParamApplyMode,
    format_compact_double,
    parse_apply_mode,
)
from labops.backends.real_sdk.device_discovery import parse_device_selector
from labops.backends.sim import SimScenarioConfig
from labops.backends.webcam.device_selector import WebcamDeviceSelector
from labops.core.errors import JsonParseError, ScenarioError, SelectorError
from labops.core.json_parser import parse_json
from labops.metrics.fps import DEFAULT_ROLLING_STEP_MS, DEFAULT_ROLLING_WINDOW_MS
from labops.metrics.thresholds import RunThresholds

DEFAULT_DURATION_MS = 1000
DEFAULT_BACKEND = "sim"

UINT32_MAX = 0xFFFFFFFF


def is_lowercase_slug(value: str) -> bool:
    """``[a-z0-9_-]+``"""
    return bool(value) and all(c.isdigit() or "a" <= c <= "z" or c in "_-" for c in value)


def as_non_negative_integer(value: Any) -> Optional[int]:
    """Whole, finite, non-negative JSON number as ``int``; otherwise None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0 or math.floor(value) != value:
        return None
    return int(value)


def _find_path(root: Any, path: Sequence[str]) -> Any:
    cursor = root
    for key in path:
        if not isinstance(cursor, dict) or key not in cursor:
            return None
        cursor = cursor[key]
    return cursor


def _find_field(root: Dict[str, Any], canonical: Sequence[str], legacy: Sequence[str] = ()) -> Any:
    value = _find_path(root, canonical)
    if value is None and legacy:
        value = _find_path(root, legacy)
    return value


def _read_int(root: Dict[str, Any], canonical: Sequence[str], legacy: Sequence[str] = ()) -> Optional[int]:
    return as_non_negative_integer(_find_field(root, canonical, legacy))


def _read_number(root: Dict[str, Any], canonical: Sequence[str], legacy: Sequence[str] = ()) -> Optional[float]:
    value = _find_field(root, canonical, legacy)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return float(value)


def _read_string(root: Dict[str, Any], canonical: Sequence[str], legacy: Sequence[str] = ()) -> Optional[str]:
    value = _find_field(root, canonical, legacy)
    return value if isinstance(value, str) else None


# ---------------------------------------------------------------------------
# Model


@dataclass
class Roi:
    x: int
    y: int
    width: int
    height: int


@dataclass
class CameraModel:
    fps: Optional[int] = None
    frame_size_bytes: Optional[int] = None
    pixel_format: Optional[str] = None
    exposure_us: Optional[int] = None
    gain_db: Optional[float] = None
    packet_size_bytes: Optional[int] = None
    inter_packet_delay_us: Optional[int] = None
    trigger_mode: Optional[str] = None
    trigger_source: Optional[str] = None
    trigger_activation: Optional[str] = None
    roi: Optional[Roi] = None


@dataclass
class SimFaultsModel:
    seed: Optional[int] = None
    jitter_us: Optional[int] = None
    drop_every_n: Optional[int] = None
    drop_percent: Optional[int] = None
    burst_drop: Optional[int] = None
    reorder: Optional[int] = None


@dataclass
class ThresholdsModel:
    min_avg_fps: Optional[float] = None
    max_drop_rate_percent: Optional[float] = None
    max_inter_frame_interval_p95_us: Optional[float] = None
    max_inter_frame_jitter_p95_us: Optional[float] = None
    max_disconnect_count: Optional[float] = None


@dataclass
class MetricsModel:
    rolling_window_ms: Optional[int] = None
    rolling_step_ms: Optional[int] = None


@dataclass
class WebcamModel:
    requested_width: Optional[int] = None
    requested_height: Optional[int] = None
    requested_fps: Optional[float] = None
    requested_pixel_format: Optional[str] = None
    device_selector: Optional[WebcamDeviceSelector] = None


@dataclass
class ScenarioModel:
    duration_ms: Optional[int] = None
    duration_s: Optional[int] = None
    backend: Optional[str] = None
    apply_mode: Optional[str] = None
    netem_profile: Optional[str] = None
    device_selector: Optional[str] = None
    camera: CameraModel = field(default_factory=CameraModel)
    sim_faults: SimFaultsModel = field(default_factory=SimFaultsModel)
    thresholds: ThresholdsModel = field(default_factory=ThresholdsModel)
    webcam: WebcamModel = field(default_factory=WebcamModel)
    metrics: MetricsModel = field(default_factory=MetricsModel)


_ROI_ERROR = "scenario camera.roi must include x, y, width, and height"


def _parse_roi(root: Dict[str, Any]) -> Optional[Roi]:
    value = _find_field(root, ("camera", "roi"), ("roi",))
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ScenarioError(_ROI_ERROR)
    parts = [as_non_negative_integer(value.get(key)) for key in ("x", "y", "width", "height")]
    if any(part is None for part in parts):
        raise ScenarioError(_ROI_ERROR)
    return Roi(*parts)


def _parse_webcam_selector(root: Dict[str, Any]) -> Optional[WebcamDeviceSelector]:
    raw = _find_path(root, ("webcam", "device_selector"))
    if not isinstance(raw, dict):
        return None
    selector = WebcamDeviceSelector(
        id=raw.get("id") if isinstance(raw.get("id"), str) else None,
        index=as_non_negative_integer(raw.get("index")),
        name_contains=raw.get("name_contains") if isinstance(raw.get("name_contains"), str) else None,
    )
    if selector.id is None and selector.index is None and selector.name_contains is None:
        return None
    return selector


def build_scenario_model(root: Dict[str, Any]) -> ScenarioModel:
    camera = CameraModel(
        fps=_read_int(root, ("camera", "fps"), ("fps",)),
        frame_size_bytes=_read_int(root, ("camera", "frame_size_bytes"), ("frame_size_bytes",)),
        pixel_format=_read_string(root, ("camera", "pixel_format"), ("pixel_format",)),
        exposure_us=_read_int(root, ("camera", "exposure_us"), ("exposure_us",)),
        gain_db=_read_number(root, ("camera", "gain_db"), ("gain_db",)),
        packet_size_bytes=_read_int(root, ("camera", "network", "packet_size_bytes"), ("packet_size_bytes",)),
        inter_packet_delay_us=_read_int(
            root, ("camera", "network", "inter_packet_delay_us"), ("inter_packet_delay_us",)
        ),
        trigger_mode=_read_string(root, ("camera", "trigger_mode"), ("trigger_mode",)),
        trigger_source=_read_string(root, ("camera", "trigger_source"), ("trigger_source",)),
        trigger_activation=_read_string(root, ("camera", "trigger_activation"), ("trigger_activation",)),
        roi=_parse_roi(root),
    )
    sim_faults = SimFaultsModel(
        **{key: _read_int(root, ("sim_faults", key), (key,)) for key in (
            "seed", "jitter_us", "drop_every_n", "drop_percent", "burst_drop", "reorder",
        )}
    )
    thresholds = ThresholdsModel(
        **{key: _read_number(root, ("thresholds", key), (key,)) for key in (
            "min_avg_fps",
            "max_drop_rate_percent",
            "max_inter_frame_interval_p95_us",
            "max_inter_frame_jitter_p95_us",
            "max_disconnect_count",
        )}
    )
    webcam = WebcamModel(
        requested_width=_read_int(root, ("webcam", "requested_width"), ("requested_width",)),
        requested_height=_read_int(root, ("webcam", "requested_height"), ("requested_height",)),
        requested_fps=_read_number(root, ("webcam", "requested_fps"), ("requested_fps",)),
        requested_pixel_format=_read_string(
            root, ("webcam", "requested_pixel_format"), ("requested_pixel_format",)
        ),
        device_selector=_parse_webcam_selector(root),
    )
    metrics = MetricsModel(
        rolling_window_ms=_read_int(root, ("metrics", "rolling_window_ms"), ("rolling_window_ms",)),
        rolling_step_ms=_read_int(root, ("metrics", "rolling_step_ms"), ("rolling_step_ms",)),
    )
    return ScenarioModel(
        duration_ms=_read_int(root, ("duration", "duration_ms"), ("duration_ms",)),
        duration_s=_read_int(root, ("duration", "duration_s"), ("duration_s",)),
        backend=_read_string(root, ("backend",)),
        apply_mode=_read_string(root, ("apply_mode",)),
        netem_profile=_read_string(root, ("netem_profile",)),
        device_selector=_read_string(root, ("device_selector",)),
        camera=camera,
        sim_faults=sim_faults,
        thresholds=thresholds,
        webcam=webcam,
        metrics=metrics,
    )


def parse_scenario_model_text(text: str) -> ScenarioModel:
    try:
        root = parse_json(text)
    except JsonParseError as e:
        raise ScenarioError(f"invalid scenario JSON: {e}") from e
    if not isinstance(root, dict):
        raise ScenarioError("scenario root must be a JSON object")
    return build_scenario_model(root)


def read_scenario_text(scenario_path: Union[str, Path]) -> str:
    try:
        return Path(scenario_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ScenarioError(f"unable to read scenario file: {scenario_path}") from e


def load_scenario_model_file(scenario_path: Union[str, Path]) -> ScenarioModel:
    return parse_scenario_model_text(read_scenario_text(scenario_path))


# ---------------------------------------------------------------------------
# Run plan


@dataclass
class RunPlan:
    scenario_id: str = ""
    duration_ms: int = DEFAULT_DURATION_MS
    backend: str = DEFAULT_BACKEND
    sim_config: SimScenarioConfig = field(default_factory=SimScenarioConfig)
    real_apply_mode: ParamApplyMode = ParamApplyMode.STRICT
    real_params: List[ApplyParamInput] = field(default_factory=list)
    webcam_params: Dict[str, str] = field(default_factory=dict)
    thresholds: RunThresholds = field(default_factory=RunThresholds)
    netem_profile: Optional[str] = None
    device_selector: Optional[str] = None
    webcam_device_selector: Optional[WebcamDeviceSelector] = None
    rolling_window_ms: int = DEFAULT_ROLLING_WINDOW_MS
    rolling_step_ms: int = DEFAULT_ROLLING_STEP_MS


def _checked_u32(key: str, value: Optional[int], current: int, max_value: int = UINT32_MAX) -> int:
    if value is None:
        return current
    if value > max_value:
        raise ScenarioError(f"scenario field out of range for key: {key}")
    return value


def _checked_threshold(key: str, value: Optional[float], percent: bool = False) -> Optional[float]:
    if value is None:
        return None
    if not math.isfinite(value) or value < 0.0:
        raise ScenarioError(f"scenario threshold must be a non-negative number for key: {key}")
    if percent and value > 100.0:
        raise ScenarioError(f"scenario threshold must be in range [0,100] for key: {key}")
    return value


def _checked_count_threshold(key: str, value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    if not math.isfinite(value) or value < 0.0 or math.floor(value) != value:
        raise ScenarioError(f"scenario threshold must be a non-negative integer for key: {key}")
    return int(value)


def _upsert(params: List[ApplyParamInput], key: str, value: str) -> None:
    for item in params:
        if item.generic_key == key:
            item.requested_value = value
            return
    params.append(ApplyParamInput(key, value))


def _real_params(camera: CameraModel, fps: int) -> List[ApplyParamInput]:
    params: List[ApplyParamInput] = []
    if camera.fps is not None:
        _upsert(params, "frame_rate", str(fps))
    if camera.pixel_format:
        _upsert(params, "pixel_format", camera.pixel_format)
    if camera.exposure_us is not None:
        _upsert(params, "exposure", str(camera.exposure_us))
    if camera.gain_db is not None:
        _upsert(params, "gain", format_compact_double(camera.gain_db))
    if camera.packet_size_bytes is not None:
        _upsert(params, "packet_size_bytes", str(camera.packet_size_bytes))
    if camera.inter_packet_delay_us is not None:
        _upsert(params, "inter_packet_delay_us", str(camera.inter_packet_delay_us))
    for key in ("trigger_mode", "trigger_source", "trigger_activation"):
        value = getattr(camera, key)
        if value:
            _upsert(params, key, value)
    if camera.roi is not None:
        # width/height before offsets
        _upsert(params, "roi_width", str(camera.roi.width))
        _upsert(params, "roi_height", str(camera.roi.height))
        _upsert(params, "roi_offset_x", str(camera.roi.x))
        _upsert(params, "roi_offset_y", str(camera.roi.y))
    return params


def _webcam_params(webcam: WebcamModel) -> Dict[str, str]:
    params: Dict[str, str] = {}
    if webcam.requested_width is not None:
        params["webcam.requested_width"] = str(webcam.requested_width)
    if webcam.requested_height is not None:
        params["webcam.requested_height"] = str(webcam.requested_height)
    if webcam.requested_fps is not None:
        params["webcam.requested_fps"] = format_compact_double(webcam.requested_fps)
    if webcam.requested_pixel_format:
        params["webcam.requested_pixel_format"] = webcam.requested_pixel_format
    return params


def build_run_plan(model: ScenarioModel, scenario_id: str = "") -> RunPlan:
    """Turn a parsed scenario into an executable plan.

    Raises:
        ScenarioError: a field is present but out of range, or two fields
            contradict each other (e.g. a real selector on the sim backend).
    """
    plan = RunPlan(scenario_id=scenario_id)

    if model.duration_ms is not None:
        if model.duration_ms == 0:
            raise ScenarioError("scenario duration_ms must be greater than 0")
        plan.duration_ms = model.duration_ms
    elif model.duration_s is not None:
        if model.duration_s == 0:
            raise ScenarioError("scenario duration_s must be greater than 0")
        plan.duration_ms = model.duration_s * 1000

    if model.backend is not None:
        if model.backend not in SCENARIO_BACKENDS:
            raise ScenarioError("scenario backend must be one of: sim, webcam, real_stub")
        plan.backend = model.backend

    if model.apply_mode is not None:
        try:
            plan.real_apply_mode = parse_apply_mode(model.apply_mode)
        except ValueError as e:
            raise ScenarioError(str(e)) from e

    sim = plan.sim_config
    faults = model.sim_faults
    sim.fps = _checked_u32("fps", model.camera.fps, sim.fps)
    sim.jitter_us = _checked_u32("jitter_us", faults.jitter_us, sim.jitter_us)
    if faults.seed is not None:
        sim.seed = faults.seed
    sim.frame_size_bytes = _checked_u32("frame_size_bytes", model.camera.frame_size_bytes, sim.frame_size_bytes)
    sim.drop_every_n = _checked_u32("drop_every_n", faults.drop_every_n, sim.drop_every_n)
    sim.drop_percent = _checked_u32("drop_percent", faults.drop_percent, sim.drop_percent, 100)
    sim.burst_drop = _checked_u32("burst_drop", faults.burst_drop, sim.burst_drop)
    sim.reorder = _checked_u32("reorder", faults.reorder, sim.reorder)

    for key in ("rolling_window_ms", "rolling_step_ms"):
        value = getattr(model.metrics, key)
        if value is None:
            continue
        if value == 0:
            raise ScenarioError(f"scenario metrics.{key} must be greater than 0")
        setattr(plan, key, _checked_u32(key, value, 0))
    if model.metrics.rolling_step_ms is None:
        plan.rolling_step_ms = min(plan.rolling_step_ms, plan.rolling_window_ms)
    if plan.rolling_step_ms > plan.rolling_window_ms:
        raise ScenarioError("scenario metrics.rolling_step_ms must not exceed metrics.rolling_window_ms")

    plan.real_params = _real_params(model.camera, sim.fps)
    plan.webcam_params = _webcam_params(model.webcam)

    t = model.thresholds
    plan.thresholds = RunThresholds(
        min_avg_fps=_checked_threshold("min_avg_fps", t.min_avg_fps),
        max_drop_rate_percent=_checked_threshold("max_drop_rate_percent", t.max_drop_rate_percent, percent=True),
        max_inter_frame_interval_p95_us=_checked_threshold(
            "max_inter_frame_interval_p95_us", t.max_inter_frame_interval_p95_us
        ),
        max_inter_frame_jitter_p95_us=_checked_threshold(
            "max_inter_frame_jitter_p95_us", t.max_inter_frame_jitter_p95_us
        ),
        max_disconnect_count=_checked_count_threshold("max_disconnect_count", t.max_disconnect_count),
    )

    if model.netem_profile is not None:
        if not model.netem_profile:
            raise ScenarioError("scenario netem_profile must not be empty")
        if not is_lowercase_slug(model.netem_profile):
            raise ScenarioError("scenario netem_profile must use lowercase slug format [a-z0-9_-]+")
        plan.netem_profile = model.netem_profile

    if model.device_selector is not None:
        if not model.device_selector:
            raise ScenarioError("scenario device_selector must not be empty")
        try:
            parse_device_selector(model.device_selector)
        except SelectorError as e:
            raise ScenarioError(
                f"invalid scenario device_selector '{model.device_selector}': {e}"
            ) from e
        plan.device_selector = model.device_selector
    if plan.device_selector is not None and plan.backend != BACKEND_REAL_STUB:
        raise ScenarioError("device_selector requires backend real_stub")

    plan.webcam_device_selector = model.webcam.device_selector
    if plan.webcam_device_selector is not None and plan.backend != BACKEND_WEBCAM:
        raise ScenarioError("webcam.device_selector requires backend webcam")
    return plan


def load_run_plan(scenario_path: Union[str, Path]) -> RunPlan:
    """Load ``scenario_path`` and build its plan; ``scenario_id`` is the file stem."""
    model = load_scenario_model_file(scenario_path)
    return build_run_plan(model, scenario_id=Path(scenario_path).stem)


__all__ = [
    "CameraModel",
    "DEFAULT_DURATION_MS",
    "MetricsModel",
    "Roi",
    "RunPlan",
    "SCENARIO_BACKENDS",
    "ScenarioModel",
    "SimFaultsModel",
    "ThresholdsModel",
    "WebcamModel",
    "as_non_negative_integer",
    "build_run_plan",
    "build_scenario_model",
    "is_lowercase_slug",
    "load_run_plan",
    "load_scenario_model_file",
    "parse_scenario_model_text",
    "read_scenario_text",
]
