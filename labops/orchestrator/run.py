"""Scenario run execution.

One call to :func:`execute_run` turns a scenario file into a run bundle under
``<out>/<run_id>/``. Work is split into stages (prepare, initialize
artifacts, configure, start, stream, stop, finalize); each stage raises
:class:`RunAborted` with the exit code it maps to, so failures surface as a
single ``error: ...`` line on stderr while every artifact written so far stays
on disk.

Soak runs stream in checkpoint-interval chunks and persist a checkpoint after
each one. A stop file or SIGINT pauses the run with a resumable bundle;
``--resume`` continues it in the same bundle directory.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import os
import secrets
import signal
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, TextIO

from labops.artifacts import (
    BundleArtifactRegistry,
    RealDeviceMetadata,
    RunConfig,
    RunInfo,
    RunTimestamps,
    WebcamDeviceMetadata,
    collect_host_probe,
    write_bundle_manifest_json,
    write_bundle_zip,
    write_camera_config_json,
    write_config_report_markdown,
    write_config_verify_json,
    write_hostprobe_json,
    write_run_json,
    write_run_summary_markdown,
    write_scenario_json,
)
from labops.artifacts.hostprobe import HOSTPROBE_FILENAME
from labops.artifacts.run_writer import SCENARIO_FILENAME
from labops.backends import BACKEND_REAL_STUB, BACKEND_SIM, BACKEND_WEBCAM, create_backend
from labops.backends.base import CameraBackend, FrameOutcome, FrameSample
from labops.backends.real_sdk.apply_params import (
    ApplyParamsResult,
    ParamApplyMode,
    StrictApplyError,
    append_skipped_transport_rows,
    apply_params,
    split_transport_tuning,
)
from labops.backends.real_sdk.device_discovery import RealDeviceInfo, resolve_connected_device
from labops.backends.real_sdk.error_mapper import map_real_failure
from labops.backends.real_sdk.node_map import create_default_node_map
from labops.backends.real_sdk.param_key_map import load_param_key_map
from labops.backends.real_sdk.real_backend import SDK_LOG_PARAM
from labops.backends.real_sdk.reconnect_policy import (
    DEFAULT_RECONNECT_RETRY_LIMIT,
    BackendLifecycle,
    ReconnectAttemptResult,
    compute_reconnect_attempts_remaining,
    execute_reconnect_attempts,
    is_likely_disconnect_error,
)
from labops.backends.real_sdk.transport_counters import collect_transport_counters
from labops.backends.sim import apply_scenario_config
from labops.backends.webcam import (
    WebcamBackend,
    WebcamDeviceInfo,
    WebcamDeviceSelector,
    enumerate_webcam_devices,
    parse_webcam_selector,
    resolve_webcam_selector,
)
from labops.core.errors import (
    BackendError,
    BackendNotAvailableError,
    CheckpointError,
    JsonParseError,
    LabOpsError,
    MetricsError,
    ScenarioError,
    SelectorError,
)
from labops.core.exit_codes import ExitCode
from labops.core.logging_utils import get_module_logger, set_run_id
from labops.core.time_utils import CaptureClock, to_epoch_millis
from labops.events import (
    ConfigStatusEvent,
    ConfigStatusKind,
    Emitter,
    EventType,
    FrameOutcomeEvent,
    StreamStartedEvent,
    TransportAnomalyEvent,
    detect_transport_anomalies,
)
from labops.metrics import (
    FpsReport,
    HeuristicFinding,
    build_anomaly_highlights,
    compute_fps_report,
    detect_heuristics,
    evaluate_thresholds,
    write_metrics_csv,
    write_metrics_json,
)
from labops.metrics.anomalies import (
    HEURISTIC_JITTER_CLIFF,
    HEURISTIC_RESEND_SPIKE,
    NO_ANOMALIES_TEXT,
)
from labops.scenarios import RunPlan, load_run_plan
from labops.soak import (
    FRAME_CACHE_FILENAME,
    CheckpointState,
    CheckpointStatus,
    append_frame_cache,
    load_checkpoint,
    load_frame_cache,
    write_checkpoint_artifacts,
)

logger = get_module_logger("RunOrchestrator")

BackendFactory = Callable[[str], CameraBackend]

SDK_LOG_FILENAME = "sdk_log.txt"
SIM_DROP_REASON = "sim_fault_injection"
DEFAULT_WEBCAM_SELECTOR_TEXT = "default:index:0"
REAL_SELECTION_RULE = "real_selector"
DEFAULT_CHECKPOINT_INTERVAL_MS = 60_000
SOAK_CHECKPOINT_KIND = "SOAK_CHECKPOINT"
STOP_REASON_INTERRUPT = "signal_interrupt"
STOP_REASON_STOP_FILE = "stop_file_detected"

INTERRUPTED_FAILURE = "run interrupted by signal before requested duration completed"
DISCONNECT_FAILURE = "device disconnected mid-run and reconnect attempts were exhausted"

_OUTCOME_DROP_REASONS = {
    FrameOutcome.TIMEOUT: "acquisition_timeout",
    FrameOutcome.INCOMPLETE: "incomplete_frame",
}


class RunAborted(LabOpsError):
    """A stage failed; ``exit_code`` is what the process should return."""

    def __init__(self, message: str, exit_code: ExitCode = ExitCode.FAILURE) -> None:
        super().__init__(message)
        self.exit_code = exit_code


@dataclass
class RunOptions:
    scenario_path: str
    output_dir: str = "out"
    zip_bundle: bool = False
    redact: bool = False
    device_selector: str = ""
    sdk_log: bool = False
    soak: bool = False
    checkpoint_interval_ms: int = DEFAULT_CHECKPOINT_INTERVAL_MS
    resume_checkpoint: str = ""
    soak_stop_file: str = ""

    @property
    def soak_enabled(self) -> bool:
        return self.soak or bool(self.resume_checkpoint)


@dataclass
class RunOutcome:
    exit_code: ExitCode = ExitCode.FAILURE
    run_id: str = ""
    bundle_dir: Optional[Path] = None
    run_json_path: Optional[Path] = None
    events_path: Optional[Path] = None
    metrics_json_path: Optional[Path] = None
    manifest_path: Optional[Path] = None
    zip_path: Optional[Path] = None
    report: Optional[FpsReport] = None
    threshold_failures: List[str] = field(default_factory=list)
    top_anomalies: List[str] = field(default_factory=list)
    interrupted: bool = False
    disconnect_failure: bool = False
    reconnect_attempts_used: int = 0
    soak_paused: bool = False
    checkpoint_path: Optional[Path] = None
    frame_cache_path: Optional[Path] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS


@dataclass
class DeviceSelection:
    selector_text: str
    rule: str
    index: int
    real_device: Optional[RealDeviceInfo] = None
    webcam_device: Optional[WebcamDeviceInfo] = None


def make_run_id(now: datetime, token: Optional[str] = None) -> str:
    """``run-<epoch_ms>-<6 hex>``; ``token`` pins the suffix for tests."""
    return f"run-{to_epoch_millis(now)}-{token if token is not None else secrets.token_hex(3)}"


def validate_scenario_path(path_text: str) -> Path:
    """Cheap preflight so path mistakes fail before any parsing."""
    if not path_text:
        raise ScenarioError("scenario path cannot be empty")
    path = Path(path_text)
    if not path.exists():
        raise ScenarioError(f"scenario file not found: {path_text}")
    if not path.is_file():
        raise ScenarioError(f"scenario path must point to a regular file: {path_text}")
    if path.suffix.lower() != ".json":
        raise ScenarioError(f"scenario file must use .json extension: {path_text}")
    try:
        size = path.stat().st_size
    except OSError as e:
        raise ScenarioError(f"unable to open scenario file: {path_text}") from e
    if size == 0:
        raise ScenarioError(f"scenario file is empty: {path_text}")
    return path


def resolve_device_selection(plan: RunPlan, cli_selector: str = "") -> Optional[DeviceSelection]:
    """Resolve ``--device`` (or the scenario's selector) against discovery.

    Returns None when the run does not target a specific device.

    Raises:
        SelectorError: on grammar errors, empty discovery or no match.
        BackendNotAvailableError: when real discovery is disabled.
    """
    if plan.backend == BACKEND_REAL_STUB:
        selector_text = cli_selector or (plan.device_selector or "")
        if not selector_text:
            return None
        device, index = resolve_connected_device(selector_text)
        return DeviceSelection(selector_text, REAL_SELECTION_RULE, index, real_device=device)

    if plan.backend == BACKEND_WEBCAM:
        if cli_selector:
            try:
                selector = parse_webcam_selector(cli_selector)
            except SelectorError as e:
                raise SelectorError(f"invalid webcam --device selector '{cli_selector}': {e}") from e
            selector_text = cli_selector
        elif plan.webcam_device_selector is not None:
            selector = plan.webcam_device_selector
            selector_text = selector.to_text()
        else:
            selector = WebcamDeviceSelector()
            selector_text = DEFAULT_WEBCAM_SELECTOR_TEXT
        selection = resolve_webcam_selector(enumerate_webcam_devices(logger=logger), selector)
        return DeviceSelection(
            selector_text, selection.rule.value, selection.index, webcam_device=selection.device
        )

    if cli_selector or plan.device_selector:
        raise SelectorError("--device/device_selector requires backend real_stub or webcam")
    return None


def _drop_reason(backend_name: str, frame: FrameSample) -> Optional[str]:
    if frame.outcome in _OUTCOME_DROP_REASONS:
        return _OUTCOME_DROP_REASONS[frame.outcome]
    if frame.is_dropped and backend_name == BACKEND_SIM:
        return SIM_DROP_REASON
    return None


def _heuristic_event_fields(finding: HeuristicFinding, report: FpsReport, configured_fps: int):
    """``(counter, observed, threshold)`` for a metrics heuristic finding."""
    if finding.heuristic_id == HEURISTIC_RESEND_SPIKE:
        peak = max((s.fps for s in report.rolling_samples), default=0.0)
        return "rolling_fps_peak", int(round(peak)), int(round(configured_fps * 1.40))
    if finding.heuristic_id == HEURISTIC_JITTER_CLIFF:
        jitter = report.inter_frame_jitter_us
        return "inter_frame_jitter_p95_us", int(round(jitter.p95_us)), int(round(jitter.avg_us * 4.0))
    stall_fps = configured_fps * 0.35
    valleys = sum(1 for s in report.rolling_samples if s.fps <= stall_fps)
    return "rolling_fps_valleys", valleys, 3


class InterruptFlag:
    """Cooperative SIGINT latch checked between stream chunks."""

    def __init__(self) -> None:
        self.requested = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def set(self) -> None:
        if not self.requested:
            logger.warning("interrupt requested; finishing current chunk")
        self.requested = True

    def install(self) -> None:
        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(signal.SIGINT, self.set)
            self._loop = loop

    def uninstall(self) -> None:
        if self._loop is None:
            return
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            self._loop.remove_signal_handler(signal.SIGINT)
        self._loop = None


class RunExecutor:
    """Holds the state of one run while its stages execute in order."""

    def __init__(
        self,
        options: RunOptions,
        *,
        clock: Optional[CaptureClock] = None,
        backend_factory: Optional[BackendFactory] = None,
        interrupt: Optional[InterruptFlag] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ) -> None:
        self.options = options
        self.clock = clock or CaptureClock.reset_to_now()
        self.backend_factory = backend_factory or functools.partial(create_backend, clock=self.clock)
        self.interrupt = interrupt or InterruptFlag()
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr

        self.outcome = RunOutcome()
        self.plan: Optional[RunPlan] = None
        self.run_info: Optional[RunInfo] = None
        self.selection: Optional[DeviceSelection] = None
        self.bundle_dir: Optional[Path] = None
        self.emitter: Optional[Emitter] = None
        self.backend: Optional[CameraBackend] = None
        self.lifecycle = BackendLifecycle(logger=logger)

        self.registry = BundleArtifactRegistry()
        self.scenario_path: Optional[Path] = None
        self.hostprobe_path: Optional[Path] = None
        self.sdk_log_path: Optional[Path] = None
        self.config_verify_path: Optional[Path] = None
        self.camera_config_path: Optional[Path] = None
        self.config_report_path: Optional[Path] = None

        self.applied_params: Dict[str, str] = {}
        self.config_applied_emitted = False
        self.stream_started = False
        self.frames: List[FrameSample] = []
        self.received_count = 0
        self.dropped_count = 0
        self.latest_frame_ts: Optional[datetime] = None
        self.completed_ms = 0
        self.disconnect_count = 0
        self.disconnect_error = ""

        self.resume_state: Optional[CheckpointState] = None
        self.soak_state: Optional[CheckpointState] = None
        self.frame_cache_path: Optional[Path] = None
        self.checkpoint_paths: List[Path] = []
        self.frame_id_offset = 0

    # ------------------------------------------------------------------
    # Helpers

    def _now(self) -> datetime:
        return self.clock.now_wall()

    @property
    def _is_soak(self) -> bool:
        return self.options.soak_enabled

    @property
    def _is_resume(self) -> bool:
        return self.resume_state is not None

    @property
    def _is_real(self) -> bool:
        return self.plan is not None and self.plan.backend == BACKEND_REAL_STUB

    def _backend_failure_text(self, operation: str, error: Exception) -> str:
        if self._is_real:
            return map_real_failure(operation, str(error)).formatted_message
        return str(error)

    async def _trace(self, event_type: EventType, payload: Dict[str, str], ts: Optional[datetime] = None) -> None:
        assert self.emitter is not None
        await self.emitter.emit_trace(event_type, ts or self._now(), payload)

    async def _stop_backend_if_started(self) -> None:
        if not self.stream_started or self.backend is None:
            return
        try:
            await asyncio.to_thread(self.backend.stop)
        except BackendError as e:
            logger.debug("best-effort stop after failure", error=e)
        self.stream_started = False

    # ------------------------------------------------------------------
    # Stages

    def _prepare(self) -> None:
        logger.info(
            "run execution requested",
            scenario=self.options.scenario_path,
            out=self.options.output_dir,
            device_selector=self.options.device_selector or "-",
        )
        try:
            scenario_path = validate_scenario_path(self.options.scenario_path)
        except ScenarioError as e:
            raise RunAborted(str(e), ExitCode.FAILURE) from e
        try:
            self.plan = load_run_plan(scenario_path)
        except (ScenarioError, JsonParseError) as e:
            raise RunAborted(str(e), ExitCode.SCHEMA_INVALID) from e

        try:
            self.selection = resolve_device_selection(self.plan, self.options.device_selector)
        except (SelectorError, BackendError) as e:
            logger.error("device selector resolution failed", error=e)
            exit_code = (ExitCode.BACKEND_NOT_AVAILABLE if isinstance(e, BackendNotAvailableError)
                         else ExitCode.FAILURE)
            raise RunAborted(f"device selector resolution failed: {e}", exit_code) from e

        if self._is_soak and self.options.checkpoint_interval_ms <= 0:
            logger.error("invalid soak checkpoint interval", interval_ms=self.options.checkpoint_interval_ms)
            raise RunAborted("checkpoint interval must be greater than 0 milliseconds", ExitCode.USAGE)
        if self.options.resume_checkpoint:
            self.resume_state = self._load_resume_checkpoint()

        created_at = self._now()
        run_id = self.resume_state.run_id if self.resume_state else make_run_id(created_at)
        self.run_info = RunInfo(
            run_id=run_id,
            config=RunConfig(
                scenario_id=self.plan.scenario_id,
                backend=self.plan.backend,
                seed=self.plan.sim_config.seed,
                duration_ms=self.plan.duration_ms,
            ),
            timestamps=RunTimestamps(created_at, created_at, created_at),
        )
        self._attach_device_metadata()

        if self.resume_state is not None:
            self.bundle_dir = Path(self.resume_state.bundle_dir)
            self._restore_from_checkpoint(self.resume_state)
        else:
            self.bundle_dir = Path(self.options.output_dir) / run_id
            if self._is_soak:
                self.frame_cache_path = self.bundle_dir / FRAME_CACHE_FILENAME
        self.emitter = Emitter(self.bundle_dir)
        self.outcome.run_id = run_id
        self.outcome.bundle_dir = self.bundle_dir
        set_run_id(run_id)
        logger.info(
            "run initialized",
            scenario_id=self.plan.scenario_id,
            backend=self.plan.backend,
            duration_ms=self.plan.duration_ms,
            bundle_dir=self.bundle_dir,
            soak_mode=self._is_soak,
            resume=self._is_resume,
        )

    def _load_resume_checkpoint(self) -> CheckpointState:
        assert self.plan is not None
        path = self.options.resume_checkpoint
        try:
            state = load_checkpoint(path)
        except CheckpointError as e:
            logger.error("failed to load soak checkpoint", checkpoint=path, error=e)
            raise RunAborted(f"failed to load soak checkpoint: {e}") from e

        if os.path.normpath(self.options.scenario_path) != os.path.normpath(str(state.scenario_path)):
            logger.error("resume scenario mismatch", scenario=self.options.scenario_path,
                         checkpoint_scenario=state.scenario_path)
            raise RunAborted(f"resume scenario mismatch: expected {state.scenario_path}")
        if state.status is CheckpointStatus.COMPLETED:
            logger.error("resume requested for already completed checkpoint", checkpoint=path)
            raise RunAborted("checkpoint is already completed")
        if state.completed_duration_ms >= state.total_duration_ms:
            logger.error("resume requested but checkpoint has no remaining duration", checkpoint=path)
            raise RunAborted("checkpoint has no remaining soak duration")
        if state.total_duration_ms != self.plan.duration_ms:
            logger.error("resume duration mismatch", scenario_duration_ms=self.plan.duration_ms,
                         checkpoint_duration_ms=state.total_duration_ms)
            raise RunAborted("scenario duration does not match checkpoint duration")
        return state

    def _restore_from_checkpoint(self, state: CheckpointState) -> None:
        """Carry identity, progress and cached frames over from a paused soak."""
        assert self.run_info is not None
        self.run_info.timestamps = RunTimestamps(
            state.timestamps.created_at, state.timestamps.started_at, state.timestamps.finished_at
        )
        self.completed_ms = state.completed_duration_ms
        self.frame_cache_path = state.resolved_frame_cache_path
        try:
            self.frames = load_frame_cache(self.frame_cache_path)
        except CheckpointError as e:
            logger.error("failed to load soak frame cache", path=self.frame_cache_path, error=e)
            raise RunAborted(f"failed to load soak frame cache: {e}") from e
        for frame in self.frames:
            if self.latest_frame_ts is None or frame.timestamp > self.latest_frame_ts:
                self.latest_frame_ts = frame.timestamp
            if frame.is_dropped:
                self.dropped_count += 1
            else:
                self.received_count += 1
        if self.frames:
            self.frame_id_offset = self.frames[-1].frame_id + 1
        logger.info(
            "resuming soak run",
            checkpoint=self.options.resume_checkpoint,
            completed_duration_ms=state.completed_duration_ms,
            cached_frames=len(self.frames),
        )

    def _attach_device_metadata(self) -> None:
        assert self.run_info is not None
        selection = self.selection
        if selection is None:
            return
        if selection.real_device is not None:
            device = selection.real_device
            self.run_info.real_device = RealDeviceMetadata(
                model=device.model,
                serial=device.serial,
                transport=device.transport,
                user_id=device.user_id or None,
                firmware_version=device.firmware_version,
                sdk_version=device.sdk_version or "unknown",
            )
        if selection.webcam_device is not None:
            device = selection.webcam_device
            self.run_info.webcam_device = WebcamDeviceMetadata(
                device_id=device.device_id,
                friendly_name=device.friendly_name,
                bus_info=device.bus_info,
                selector_text=selection.selector_text,
                selection_rule=selection.rule,
                discovered_index=selection.index,
            )

    async def _initialize_artifacts(self) -> None:
        assert self.run_info is not None and self.bundle_dir is not None
        if not self._is_resume:
            await self._trace(
                EventType.RUN_STARTED,
                {
                    "run_id": self.run_info.run_id,
                    "scenario_id": self.run_info.config.scenario_id,
                    "backend": self.run_info.config.backend,
                    "duration_ms": str(self.run_info.config.duration_ms),
                },
                ts=self.run_info.timestamps.created_at,
            )

        existing_scenario = self.bundle_dir / SCENARIO_FILENAME
        if self._is_resume and existing_scenario.is_file():
            logger.info("resume mode reusing existing scenario snapshot", path=existing_scenario)
            self.scenario_path = existing_scenario
        else:
            try:
                self.scenario_path = write_scenario_json(self.options.scenario_path, self.bundle_dir)
            except LabOpsError as e:
                raise RunAborted(f"failed to write scenario snapshot: {e}") from e

        existing_hostprobe = self.bundle_dir / HOSTPROBE_FILENAME
        if self._is_resume and existing_hostprobe.is_file():
            logger.info("resume mode reusing existing host probe", path=existing_hostprobe)
            self.hostprobe_path = existing_hostprobe
            return

        snapshot = await asyncio.to_thread(collect_host_probe, self.run_info.timestamps.created_at)
        try:
            self.hostprobe_path = write_hostprobe_json(snapshot, self.bundle_dir, redact=self.options.redact)
        except LabOpsError as e:
            raise RunAborted(f"failed to write hostprobe.json: {e}") from e

    async def _configure_backend(self) -> None:
        assert self.plan is not None and self.bundle_dir is not None
        try:
            self.backend = self.backend_factory(self.plan.backend)
        except BackendNotAvailableError as e:
            raise RunAborted(str(e), ExitCode.BACKEND_NOT_AVAILABLE) from e
        except BackendError as e:
            raise RunAborted(str(e)) from e

        if self.options.sdk_log:
            self._enable_sdk_log()
        self._apply_device_selection()

        if self._is_real:
            await self._apply_real_params()

        if self.plan.backend == BACKEND_WEBCAM:
            for key, value in self.plan.webcam_params.items():
                try:
                    self.backend.set_param(key, value)
                except BackendError as e:
                    raise RunAborted(f"backend config failed: {e}") from e
                self.applied_params[key] = value

        await self._connect()

        if self.plan.backend == BACKEND_SIM:
            try:
                self.applied_params.update(apply_scenario_config(self.backend, self.plan.sim_config))
            except BackendError as e:
                raise RunAborted(f"backend config failed: {e}") from e

        if self.plan.backend == BACKEND_WEBCAM and isinstance(self.backend, WebcamBackend):
            self._write_webcam_config_verify()

        if not self.config_applied_emitted:
            await self._emit_config_applied()

    def _enable_sdk_log(self) -> None:
        assert self.plan is not None and self.backend is not None and self.bundle_dir is not None
        if not self._is_real:
            logger.warning("sdk log capture requested for non-real backend; request ignored",
                           backend=self.plan.backend)
            return
        path = self.bundle_dir / SDK_LOG_FILENAME
        try:
            self.bundle_dir.mkdir(parents=True, exist_ok=True)
            self.backend.set_param(SDK_LOG_PARAM, str(path))
        except (OSError, BackendError) as e:
            raise RunAborted(f"failed to enable sdk log capture: {e}") from e
        self.sdk_log_path = path

    def _apply_device_selection(self) -> None:
        selection = self.selection
        if selection is None:
            return
        assert self.backend is not None
        params: Dict[str, str] = {
            "device.selector": selection.selector_text,
            "device.selection_rule": selection.rule,
            "device.index": str(selection.index),
        }
        real = selection.real_device
        if real is not None:
            params["device.model"] = real.model
            params["device.serial"] = real.serial
            params["device.user_id"] = real.user_id or "(none)"
            params["device.transport"] = real.transport
            optional = {
                "device.ip": real.ip_address,
                "device.mac": real.mac_address,
                "device.firmware_version": real.firmware_version,
                "device.sdk_version": real.sdk_version,
            }
            params.update({key: value for key, value in optional.items() if value})
        webcam = selection.webcam_device
        if webcam is not None:
            if webcam.capture_index is not None:
                params["device.index"] = str(webcam.capture_index)
            params["device.id"] = webcam.device_id
            params["device.friendly_name"] = webcam.friendly_name
            if webcam.bus_info:
                params["device.bus_info"] = webcam.bus_info

        for key, value in params.items():
            try:
                self.backend.set_param(key, value)
            except BackendError as e:
                logger.error("failed to apply resolved device selector", error=e)
                raise RunAborted(f"failed to apply resolved device selector: {e}") from e
            self.applied_params[key] = value

    async def _apply_real_params(self) -> None:
        assert self.plan is not None and self.run_info is not None and self.backend is not None
        assert self.bundle_dir is not None
        plan = self.plan
        mode = plan.real_apply_mode
        try:
            key_map = load_param_key_map()
        except LabOpsError as e:
            self._write_config_artifacts(ApplyParamsResult(), mode, collection_error=str(e))
            raise RunAborted(f"failed to load real backend param key map: {e}") from e

        transport = self.run_info.real_device.transport if self.run_info.real_device else "unknown"
        kept, skipped = split_transport_tuning(plan.real_params, transport)
        try:
            result = await asyncio.to_thread(
                apply_params, self.backend, key_map, create_default_node_map(), kept, mode
            )
        except StrictApplyError as e:
            append_skipped_transport_rows(e.result, skipped, transport)
            self._write_config_artifacts(e.result, mode, collection_error=str(e))
            for item in e.result.unsupported:
                await self._emit_config_status(
                    ConfigStatusKind.UNSUPPORTED, mode,
                    generic_key=item.generic_key, requested_value=item.requested_value, reason=item.reason,
                )
            logger.error("backend config failed", apply_mode=mode.value, error=e)
            raise RunAborted(f"backend config failed: {e}") from e

        append_skipped_transport_rows(result, skipped, transport)
        for item in result.unsupported:
            logger.warning(
                "config unsupported in best-effort mode",
                generic_key=item.generic_key,
                requested_value=item.requested_value,
                reason=item.reason,
            )
            await self._emit_config_status(
                ConfigStatusKind.UNSUPPORTED, mode,
                generic_key=item.generic_key, requested_value=item.requested_value, reason=item.reason,
            )
        for applied in result.applied:
            self.applied_params[applied.generic_key] = applied.applied_value
            if applied.adjusted:
                await self._emit_config_status(
                    ConfigStatusKind.ADJUSTED, mode,
                    generic_key=applied.generic_key,
                    requested_value=applied.requested_value,
                    reason=applied.adjustment_reason,
                    node_name=applied.node_name,
                    applied_value=applied.applied_value,
                )
        self._write_config_artifacts(result, mode)
        await self._emit_config_applied()

    def _write_config_artifacts(self, result: ApplyParamsResult, mode: ParamApplyMode,
                                collection_error: str = "") -> None:
        assert self.plan is not None and self.run_info is not None and self.bundle_dir is not None
        assert self.backend is not None
        try:
            self.config_verify_path = write_config_verify_json(self.run_info, result, mode, self.bundle_dir)
            self.camera_config_path = write_camera_config_json(
                self.run_info, self.backend.dump_config(), self.plan.real_params, result, mode,
                self.bundle_dir, collection_error=collection_error,
            )
            self.config_report_path = write_config_report_markdown(
                self.run_info, self.plan.real_params, result, mode, self.bundle_dir,
                collection_error=collection_error,
            )
        except LabOpsError as e:
            raise RunAborted(f"failed to write config artifacts: {e}") from e

    def _write_webcam_config_verify(self) -> None:
        assert self.run_info is not None and self.bundle_dir is not None
        rows = self.backend.readback_rows
        if not rows:
            return
        result = ApplyParamsResult(readback_rows=rows)
        try:
            self.config_verify_path = write_config_verify_json(
                self.run_info, result, ParamApplyMode.BEST_EFFORT, self.bundle_dir
            )
        except LabOpsError as e:
            raise RunAborted(f"failed to write config_verify.json: {e}") from e

    async def _emit_config_status(self, kind: ConfigStatusKind, mode: ParamApplyMode, **fields: str) -> None:
        assert self.emitter is not None and self.run_info is not None
        await self.emitter.emit_config_status(
            ConfigStatusEvent(
                kind=kind,
                ts=self._now(),
                run_id=self.run_info.run_id,
                scenario_id=self.run_info.config.scenario_id,
                apply_mode=mode.value,
                **fields,
            )
        )

    async def _emit_config_applied(self) -> None:
        assert self.emitter is not None and self.run_info is not None
        await self.emitter.emit_config_status(
            ConfigStatusEvent(
                kind=ConfigStatusKind.APPLIED,
                ts=self._now(),
                run_id=self.run_info.run_id,
                scenario_id=self.run_info.config.scenario_id,
                applied_params=dict(self.applied_params),
            )
        )
        self.config_applied_emitted = True

    async def _connect(self) -> None:
        assert self.backend is not None and self.run_info is not None and self.bundle_dir is not None
        try:
            await asyncio.to_thread(self.backend.connect)
        except BackendError as e:
            fields = {"backend": self.plan.backend, "error": str(e)}
            if self._is_real:
                mapped = map_real_failure("connect", str(e))
                fields.update(error_code=mapped.stable_code, error_action=mapped.actionable_message)
            logger.error("backend connect failed", **fields)

            self.run_info.timestamps.finished_at = self._now()
            self._attach_transport_counters()
            self._write_run_json()
            logger.info(
                "partial bundle kept after connect failure",
                bundle_dir=self.bundle_dir,
                config_verify=self.config_verify_path or "-",
                config_report=self.config_report_path or "-",
            )
            exit_code = (
                ExitCode.BACKEND_NOT_AVAILABLE
                if isinstance(e, BackendNotAvailableError)
                else ExitCode.BACKEND_CONNECT_FAILED
            )
            raise RunAborted(
                f"backend connect failed: {self._backend_failure_text('connect', e)}", exit_code
            ) from e
        self.lifecycle.on_connected()

    def _attach_transport_counters(self) -> None:
        if not self._is_real or self.backend is None or self.run_info is None:
            return
        if self.run_info.real_device is None:
            return
        self.run_info.real_device.transport_counters = collect_transport_counters(self.backend.dump_config())

    def _write_run_json(self) -> None:
        assert self.run_info is not None and self.bundle_dir is not None
        try:
            self.outcome.run_json_path = write_run_json(self.run_info, self.bundle_dir)
        except LabOpsError as e:
            logger.error("failed to write run.json", error=e)
            raise RunAborted(str(e)) from e

    async def _start_stream(self) -> None:
        assert self.backend is not None and self.plan is not None and self.run_info is not None
        try:
            await asyncio.to_thread(self.backend.start)
        except BackendError as e:
            logger.error("backend start failed", error=e)
            raise RunAborted(f"backend start failed: {self._backend_failure_text('start', e)}") from e
        self.stream_started = True
        self.lifecycle.on_started()
        started_at = self._now()
        if not self._is_resume:
            self.run_info.timestamps.started_at = started_at
        logger.info("stream started", backend=self.plan.backend, duration_ms=self.plan.duration_ms,
                    soak_mode=self._is_soak, resume=self._is_resume)

        assert self.emitter is not None
        await self.emitter.emit_stream_started(
            StreamStartedEvent(
                ts=started_at,
                run_id=self.run_info.run_id,
                scenario_id=self.run_info.config.scenario_id,
                backend=self.plan.backend,
                duration_ms=self.plan.duration_ms,
                fps=self.plan.sim_config.fps,
                seed=self.plan.sim_config.seed,
                soak_mode=self._is_soak,
                resume=self._is_resume,
            )
        )

    async def _append_frame(self, frame: FrameSample) -> None:
        assert self.emitter is not None and self.run_info is not None and self.plan is not None
        if self.latest_frame_ts is None or frame.timestamp > self.latest_frame_ts:
            self.latest_frame_ts = frame.timestamp
        if frame.is_dropped:
            self.dropped_count += 1
        else:
            self.received_count += 1
        await self.emitter.emit_frame_outcome(
            FrameOutcomeEvent(
                ts=frame.timestamp,
                run_id=self.run_info.run_id,
                frame_id=frame.frame_id,
                size_bytes=frame.size_bytes,
                dropped=frame.is_dropped,
                outcome=frame.outcome,
                reason=_drop_reason(self.plan.backend, frame),
            )
        )
        self.frames.append(frame)

    async def _handle_disconnect(self, error: BackendError) -> bool:
        """Emit the disconnect trace and try to recover; True means resumed."""
        assert self.backend is not None and self.run_info is not None
        self.disconnect_count += 1
        used = self.outcome.reconnect_attempts_used
        remaining = compute_reconnect_attempts_remaining(DEFAULT_RECONNECT_RETRY_LIMIT, used)
        logger.warning(
            "device disconnected during stream",
            error=error,
            reconnect_attempts_used_total=used,
            reconnect_attempts_remaining=remaining,
            reconnect_retry_limit=DEFAULT_RECONNECT_RETRY_LIMIT,
        )
        self.lifecycle.on_disconnect()
        await self._trace(
            EventType.DEVICE_DISCONNECTED,
            {
                "run_id": self.run_info.run_id,
                "scenario_id": self.run_info.config.scenario_id,
                "error": str(error),
                "reconnect_attempts_used_total": str(used),
                "reconnect_attempts_remaining": str(remaining),
                "reconnect_retry_limit": str(DEFAULT_RECONNECT_RETRY_LIMIT),
            },
        )

        if remaining == 0:
            self.disconnect_error = "device disconnect detected but reconnect budget is exhausted"
            self.lifecycle.on_reconnect_result(ReconnectAttemptResult(attempts_used_total=used))
            return False

        result = await asyncio.to_thread(
            execute_reconnect_attempts, self.backend, remaining, used, logger=logger
        )
        self.outcome.reconnect_attempts_used = result.attempts_used_total
        self.lifecycle.on_reconnect_result(result)
        if result.reconnected:
            return True

        self.disconnect_error = result.error or str(error)
        logger.error(
            "reconnect attempts exhausted after disconnect",
            disconnect_error=error,
            reconnect_error=self.disconnect_error,
            reconnect_attempts_used_total=result.attempts_used_total,
            reconnect_retry_limit=DEFAULT_RECONNECT_RETRY_LIMIT,
        )
        return False

    async def _stream(self) -> None:
        assert self.backend is not None and self.plan is not None
        if self._is_soak:
            await self._stream_soak()
            return
        remaining_ms = self.plan.duration_ms
        while remaining_ms > 0:
            if self.interrupt.requested:
                self.outcome.interrupted = True
                break
            chunk_ms = min(self.plan.rolling_window_ms, remaining_ms)
            try:
                pulled = await asyncio.to_thread(self.backend.pull_frames, chunk_ms)
            except BackendError as e:
                if self._is_real and is_likely_disconnect_error(str(e)):
                    if await self._handle_disconnect(e):
                        continue
                    self.outcome.disconnect_failure = True
                    break
                logger.error("backend pull_frames failed", error=e)
                await self._stop_backend_if_started()
                raise RunAborted(
                    f"backend pull_frames failed: {self._backend_failure_text('pull_frames', e)}"
                ) from e

            for frame in pulled:
                await self._append_frame(frame)
            self.completed_ms += chunk_ms
            remaining_ms = self.plan.duration_ms - self.completed_ms

        if self.outcome.interrupted:
            logger.warning(
                "interrupt received; finalizing run with partial duration",
                completed_duration_ms=self.completed_ms,
                requested_duration_ms=self.plan.duration_ms,
            )
        elif self.outcome.disconnect_failure:
            self.stream_started = False
            logger.warning(
                "device disconnect handling exhausted retries; finalizing partial run",
                completed_duration_ms=self.completed_ms,
                requested_duration_ms=self.plan.duration_ms,
                reconnect_attempts_used_total=self.outcome.reconnect_attempts_used,
            )

    # ------------------------------------------------------------------
    # Soak mode

    def _soak_stop_reason(self) -> str:
        if self.interrupt.requested:
            return STOP_REASON_INTERRUPT
        stop_file = self.options.soak_stop_file
        if stop_file and os.path.exists(stop_file):
            return STOP_REASON_STOP_FILE
        return ""

    def _normalize_soak_frame(self, frame: FrameSample) -> FrameSample:
        """Keep frame ids and timestamps increasing across resumed sessions."""
        if self.frame_id_offset:
            frame = replace(frame, frame_id=frame.frame_id + self.frame_id_offset)
        if self.latest_frame_ts is not None and frame.timestamp <= self.latest_frame_ts:
            frame = replace(frame, timestamp=self.latest_frame_ts + timedelta(microseconds=1))
        return frame

    def _new_soak_state(self) -> CheckpointState:
        assert self.plan is not None and self.run_info is not None and self.bundle_dir is not None
        timestamps = self.run_info.timestamps
        return CheckpointState(
            run_id=self.run_info.run_id,
            scenario_path=Path(self.options.scenario_path),
            bundle_dir=self.bundle_dir,
            frame_cache_path=self.frame_cache_path,
            timestamps=RunTimestamps(timestamps.created_at, timestamps.started_at, timestamps.finished_at),
            updated_at=self._now(),
            total_duration_ms=self.plan.duration_ms,
            completed_duration_ms=self.completed_ms,
            checkpoints_written=self.resume_state.checkpoints_written if self.resume_state else 0,
        )

    def _stamp_soak_finish(self, state: CheckpointState) -> None:
        assert self.run_info is not None
        finished_at = self._now()
        if self.latest_frame_ts is not None and finished_at < self.latest_frame_ts:
            finished_at = self.latest_frame_ts
        state.timestamps.finished_at = finished_at
        state.updated_at = finished_at
        self.run_info.timestamps.finished_at = finished_at

    async def _write_soak_checkpoint(self, state: CheckpointState, status: CheckpointStatus,
                                     stop_reason: str = "") -> None:
        state.completed_duration_ms = self.completed_ms
        state.frames_total = len(self.frames)
        state.frames_received = self.received_count
        state.frames_dropped = self.dropped_count
        state.status = status
        state.stop_reason = stop_reason
        try:
            latest, history = await asyncio.to_thread(write_checkpoint_artifacts, state)
        except LabOpsError as e:
            logger.error("failed to write soak checkpoint", status=status.value, error=e)
            raise RunAborted(f"failed to write soak checkpoint: {e}") from e
        self.outcome.checkpoint_path = latest
        if history not in self.checkpoint_paths:
            self.checkpoint_paths.append(history)

    async def _stream_soak(self) -> None:
        """Pull in checkpoint-interval chunks, persisting state after each one.

        Sets ``outcome.soak_paused`` when a stop request arrives with time
        still remaining; otherwise the final checkpoint is marked completed.
        """
        assert self.backend is not None and self.plan is not None and self.run_info is not None
        assert self.frame_cache_path is not None
        state = self._new_soak_state()
        self.soak_state = state
        self.outcome.frame_cache_path = self.frame_cache_path
        remaining_ms = self.plan.duration_ms - self.completed_ms
        while remaining_ms > 0:
            chunk_ms = min(self.options.checkpoint_interval_ms, remaining_ms)
            try:
                pulled = await asyncio.to_thread(self.backend.pull_frames, chunk_ms)
            except BackendError as e:
                logger.error("backend pull_frames failed", error=e)
                raise RunAborted(
                    f"backend pull_frames failed: {self._backend_failure_text('pull_frames', e)}"
                ) from e

            chunk: List[FrameSample] = []
            for frame in pulled:
                frame = self._normalize_soak_frame(frame)
                await self._append_frame(frame)
                chunk.append(frame)
            if chunk:
                try:
                    await append_frame_cache(chunk, self.frame_cache_path)
                except LabOpsError as e:
                    logger.error("failed to append soak frame cache", error=e)
                    raise RunAborted(f"failed to append soak frame cache: {e}") from e

            self.completed_ms = min(self.plan.duration_ms, self.completed_ms + chunk_ms)
            remaining_ms = self.plan.duration_ms - self.completed_ms
            state.checkpoints_written += 1
            state.updated_at = self._now()
            await self._write_soak_checkpoint(state, CheckpointStatus.RUNNING)
            await self._trace(
                EventType.INFO,
                {
                    "run_id": self.run_info.run_id,
                    "kind": SOAK_CHECKPOINT_KIND,
                    "checkpoint_index": str(state.checkpoints_written),
                    "completed_duration_ms": str(self.completed_ms),
                    "remaining_duration_ms": str(remaining_ms),
                },
                ts=state.updated_at,
            )

            stop_reason = self._soak_stop_reason()
            if stop_reason and remaining_ms > 0:
                self._stamp_soak_finish(state)
                await self._write_soak_checkpoint(state, CheckpointStatus.PAUSED, stop_reason)
                self.outcome.soak_paused = True
                logger.info(
                    "soak run paused safely",
                    bundle_dir=self.bundle_dir,
                    checkpoint=self.outcome.checkpoint_path,
                    reason=stop_reason,
                )
                return

        self._stamp_soak_finish(state)
        state.checkpoints_written += 1
        await self._write_soak_checkpoint(state, CheckpointStatus.COMPLETED, "completed")

    def _register_soak_artifacts(self, registry: BundleArtifactRegistry) -> None:
        registry.register_optional(self.outcome.checkpoint_path)
        for path in self.checkpoint_paths:
            registry.register_optional(path)
        registry.register_optional(self.frame_cache_path)

    def _write_manifest(self, registry: BundleArtifactRegistry) -> None:
        assert self.bundle_dir is not None
        try:
            self.outcome.manifest_path = write_bundle_manifest_json(
                self.bundle_dir, registry.build_manifest_input()
            )
        except LabOpsError as e:
            logger.error("failed to write bundle manifest", error=e)
            raise RunAborted(f"failed to write bundle manifest: {e}") from e

    async def _pause_soak(self) -> None:
        """Stop the stream and leave a resumable bundle (no metrics yet)."""
        assert self.backend is not None and self.plan is not None and self.run_info is not None
        assert self.emitter is not None
        if self.stream_started:
            try:
                await asyncio.to_thread(self.backend.stop)
            except BackendError as e:
                logger.warning("backend stop failed during soak pause", error=e)
            else:
                self.lifecycle.on_stopped()
            self.stream_started = False

        await self._trace(
            EventType.STREAM_STOPPED,
            {
                "run_id": self.run_info.run_id,
                "frames_total": str(len(self.frames)),
                "frames_received": str(self.received_count),
                "frames_dropped": str(self.dropped_count),
                "reason": "soak_paused",
                "completed_duration_ms": str(self.completed_ms),
                "remaining_duration_ms": str(self.plan.duration_ms - self.completed_ms),
            },
            ts=self.run_info.timestamps.finished_at,
        )
        self._attach_transport_counters()
        self._write_run_json()
        self.outcome.events_path = self.emitter.events_path

        registry = self.registry
        registry.register_many([
            self.scenario_path,
            self.hostprobe_path,
            self.outcome.run_json_path,
            self.emitter.events_path,
        ])
        self._register_soak_artifacts(registry)
        registry.register_optional(self.sdk_log_path)
        registry.register_optional(self.config_verify_path)
        registry.register_optional(self.camera_config_path)
        registry.register_optional(self.config_report_path)
        self._write_manifest(registry)

    async def _stop_stream(self) -> None:
        assert self.backend is not None and self.run_info is not None and self.plan is not None
        if self.stream_started:
            try:
                await asyncio.to_thread(self.backend.stop)
            except BackendError as e:
                logger.error("backend stop failed", error=e)
                raise RunAborted(f"backend stop failed: {self._backend_failure_text('stop', e)}") from e
            self.stream_started = False
            self.lifecycle.on_stopped()

        if self.soak_state is not None:
            finished_at = self.soak_state.timestamps.finished_at
        else:
            finished_at = self._now()
            if self.latest_frame_ts is not None and finished_at < self.latest_frame_ts:
                finished_at = self.latest_frame_ts
        self.run_info.timestamps.finished_at = finished_at

        reason = "soak_completed" if self._is_soak else "completed"
        if self.outcome.disconnect_failure:
            reason = "device_disconnect"
        elif self.outcome.interrupted:
            reason = "signal_interrupt"
        payload = {
            "run_id": self.run_info.run_id,
            "frames_total": str(len(self.frames)),
            "frames_received": str(self.received_count),
            "frames_dropped": str(self.dropped_count),
            "reason": reason,
        }
        if self.outcome.interrupted or self.outcome.disconnect_failure:
            payload["requested_duration_ms"] = str(self.plan.duration_ms)
            payload["completed_duration_ms"] = str(self.completed_ms)
        if self.outcome.disconnect_failure:
            payload["reconnect_attempts_used_total"] = str(self.outcome.reconnect_attempts_used)
            payload["reconnect_retry_limit"] = str(DEFAULT_RECONNECT_RETRY_LIMIT)
            if self.disconnect_error:
                payload["disconnect_error"] = self.disconnect_error
        await self._trace(EventType.STREAM_STOPPED, payload, ts=finished_at)

    async def _finalize(self) -> None:
        assert self.plan is not None and self.run_info is not None and self.bundle_dir is not None
        assert self.emitter is not None
        self._attach_transport_counters()
        self._write_run_json()
        self.outcome.events_path = self.emitter.events_path

        metrics_duration_ms = self.plan.duration_ms
        if self.outcome.interrupted or self.outcome.disconnect_failure:
            metrics_duration_ms = max(1, self.completed_ms)
        try:
            report = compute_fps_report(
                self.frames,
                metrics_duration_ms,
                rolling_window_ms=self.plan.rolling_window_ms,
                rolling_step_ms=self.plan.rolling_step_ms,
            )
        except MetricsError as e:
            logger.error("failed to compute metrics", error=e)
            raise RunAborted(f"failed to compute fps metrics: {e}") from e
        self.outcome.report = report

        try:
            metrics_csv_path = write_metrics_csv(report, self.bundle_dir)
        except LabOpsError as e:
            raise RunAborted(f"failed to write metrics.csv: {e}") from e
        try:
            self.outcome.metrics_json_path = write_metrics_json(report, self.bundle_dir)
        except LabOpsError as e:
            raise RunAborted(f"failed to write metrics.json: {e}") from e

        failures: List[str] = []
        if self.outcome.interrupted:
            failures.append(INTERRUPTED_FAILURE)
        elif self.outcome.disconnect_failure:
            text = DISCONNECT_FAILURE
            if self.disconnect_error:
                text += f": {self.disconnect_error}"
            failures.append(text)
        else:
            failures = evaluate_thresholds(self.plan.thresholds, report, disconnect_count=self.disconnect_count)
        self.outcome.threshold_failures = failures

        configured_fps = self.plan.sim_config.fps
        top_anomalies = build_anomaly_highlights(report, configured_fps, failures)
        await self._emit_anomaly_events(report, configured_fps, top_anomalies)
        self.outcome.top_anomalies = top_anomalies

        try:
            summary_path = write_run_summary_markdown(
                self.run_info, report, configured_fps, failures, top_anomalies, self.bundle_dir
            )
        except LabOpsError as e:
            raise RunAborted(f"failed to write summary.md: {e}") from e

        registry = self.registry
        registry.register_many([
            self.scenario_path,
            self.hostprobe_path,
            self.outcome.run_json_path,
            self.emitter.events_path,
            metrics_csv_path,
            self.outcome.metrics_json_path,
            summary_path,
        ])
        registry.register_optional(self.sdk_log_path)
        registry.register_optional(self.config_verify_path)
        registry.register_optional(self.camera_config_path)
        registry.register_optional(self.config_report_path)
        self._register_soak_artifacts(registry)
        self._write_manifest(registry)

        if self.options.zip_bundle:
            try:
                self.outcome.zip_path = await asyncio.to_thread(write_bundle_zip, self.bundle_dir)
            except LabOpsError as e:
                logger.error("failed to write support bundle zip", error=e)
                raise RunAborted(f"failed to write support bundle zip: {e}") from e

        logger.info(
            "run artifacts written",
            bundle_dir=self.bundle_dir,
            events=self.emitter.events_path,
            config_verify=self.config_verify_path or "-",
            config_report=self.config_report_path or "-",
            sdk_log=self.sdk_log_path or "-",
            metrics_json=self.outcome.metrics_json_path,
            summary=summary_path,
        )

    async def _emit_anomaly_events(self, report: FpsReport, configured_fps: int, top_anomalies: List[str]) -> None:
        assert self.emitter is not None and self.run_info is not None
        ts = self.run_info.timestamps.finished_at
        for finding in detect_heuristics(report, configured_fps):
            counter, observed, threshold = _heuristic_event_fields(finding, report, configured_fps)
            await self.emitter.emit_transport_anomaly(
                TransportAnomalyEvent(
                    ts=ts,
                    run_id=self.run_info.run_id,
                    scenario_id=self.run_info.config.scenario_id,
                    heuristic_id=finding.heuristic_id,
                    counter=counter,
                    observed_value=observed,
                    threshold=threshold,
                    summary=finding.message,
                )
            )

        counters = self.run_info.real_device.transport_counters if self.run_info.real_device else None
        transport_findings = detect_transport_anomalies(counters)
        if transport_findings and NO_ANOMALIES_TEXT in top_anomalies:
            top_anomalies.remove(NO_ANOMALIES_TEXT)
        for finding in transport_findings:
            top_anomalies.append(finding.summary)
            await self.emitter.emit_transport_anomaly(
                TransportAnomalyEvent(
                    ts=ts,
                    run_id=self.run_info.run_id,
                    scenario_id=self.run_info.config.scenario_id,
                    heuristic_id=finding.heuristic_id,
                    counter=finding.counter_name,
                    observed_value=finding.observed_value,
                    threshold=finding.threshold,
                    summary=finding.summary,
                )
            )

    # ------------------------------------------------------------------
    # Console output

    def _print_summary(self) -> None:
        out = self.stdout
        outcome = self.outcome
        report = outcome.report
        assert self.run_info is not None and report is not None
        print(f"run queued: {self.options.scenario_path}", file=out)
        print(f"run_id: {outcome.run_id}", file=out)
        if self.run_info.real_device is not None:
            real = self.run_info.real_device
            print("selected_device_type: real", file=out)
            print(f"selected_device_model: {real.model}", file=out)
            print(f"selected_device_serial: {real.serial}", file=out)
            print(f"selected_device_transport: {real.transport}", file=out)
        if self.run_info.webcam_device is not None:
            webcam = self.run_info.webcam_device
            print("selected_device_type: webcam", file=out)
            print(f"selected_webcam_id: {webcam.device_id}", file=out)
            print(f"selected_webcam_name: {webcam.friendly_name}", file=out)
            print(f"selected_webcam_rule: {webcam.selection_rule}", file=out)
        print(f"bundle: {outcome.bundle_dir}", file=out)
        print(f"redaction: {'enabled' if self.options.redact else 'disabled'}", file=out)
        sdk_log_status = "disabled"
        if self.options.sdk_log:
            sdk_log_status = "enabled" if self.sdk_log_path is not None else "ignored"
        print(f"sdk_log_capture: {sdk_log_status}", file=out)
        print(f"soak_mode: {'enabled' if self._is_soak else 'disabled'}", file=out)
        if self._is_soak:
            print(f"soak_checkpoint_interval_ms: {self.options.checkpoint_interval_ms}", file=out)
            print(f"soak_checkpoint: {outcome.checkpoint_path}", file=out)
            print(f"soak_frame_cache: {outcome.frame_cache_path}", file=out)
        print(f"artifact: {outcome.run_json_path}", file=out)
        print(f"events: {outcome.events_path}", file=out)
        for label, path in (
            ("config_verify", self.config_verify_path),
            ("camera_config", self.camera_config_path),
            ("config_report", self.config_report_path),
        ):
            if path is not None:
                print(f"{label}: {path}", file=out)
        print(f"metrics_json: {outcome.metrics_json_path}", file=out)
        print(f"manifest: {outcome.manifest_path}", file=out)
        if outcome.zip_path is not None:
            print(f"bundle_zip: {outcome.zip_path}", file=out)
        print(f"fps: avg={report.avg_fps:.3f} rolling_samples={len(report.rolling_samples)}", file=out)
        print(
            f"drops: total={report.dropped_frames_total} generic={report.dropped_generic_frames_total} "
            f"timeout={report.timeout_frames_total} incomplete={report.incomplete_frames_total} "
            f"rate_percent={report.drop_rate_percent:.3f}",
            file=out,
        )
        print(
            f"timing_us: interval_avg={report.inter_frame_interval_us.avg_us:.3f} "
            f"interval_p95={report.inter_frame_interval_us.p95_us:.3f} "
            f"jitter_avg={report.inter_frame_jitter_us.avg_us:.3f} "
            f"jitter_p95={report.inter_frame_jitter_us.p95_us:.3f}",
            file=out,
        )
        print(
            f"frames: total={len(self.frames)} received={self.received_count} dropped={self.dropped_count}",
            file=out,
        )
        status = "completed"
        if outcome.disconnect_failure:
            status = "failed_device_disconnect"
        elif outcome.interrupted:
            status = "interrupted"
        print(f"run_status: {status}", file=out)

    def _print_pause_summary(self) -> None:
        out = self.stdout
        outcome = self.outcome
        assert self.plan is not None
        print(f"run queued: {self.options.scenario_path}", file=out)
        print(f"run_id: {outcome.run_id}", file=out)
        print(f"bundle: {outcome.bundle_dir}", file=out)
        print(f"events: {outcome.events_path}", file=out)
        for label, path in (
            ("config_verify", self.config_verify_path),
            ("camera_config", self.camera_config_path),
            ("config_report", self.config_report_path),
            ("sdk_log", self.sdk_log_path),
        ):
            if path is not None and path.exists():
                print(f"{label}: {path}", file=out)
        print(f"artifact: {outcome.run_json_path}", file=out)
        print(f"manifest: {outcome.manifest_path}", file=out)
        print("soak_mode: enabled", file=out)
        print("soak_status: paused", file=out)
        print(f"soak_checkpoint: {outcome.checkpoint_path}", file=out)
        print(f"soak_frame_cache: {outcome.frame_cache_path}", file=out)
        print(f"soak_completed_duration_ms: {self.completed_ms}", file=out)
        print(f"soak_remaining_duration_ms: {self.plan.duration_ms - self.completed_ms}", file=out)

    def _resolve_exit_code(self) -> ExitCode:
        outcome = self.outcome
        if outcome.interrupted:
            logger.warning("run interrupted by signal", frames_total=len(self.frames))
            print("warning: run interrupted by Ctrl+C; finalized partial artifact bundle", file=self.stderr)
            return ExitCode.FAILURE
        if outcome.disconnect_failure:
            logger.error(
                "run failed after device disconnect and reconnect exhaustion",
                frames_total=len(self.frames),
                reconnect_attempts_used_total=outcome.reconnect_attempts_used,
                error=self.disconnect_error or "-",
            )
            print("error: run failed after device disconnect; reconnect attempts exhausted", file=self.stderr)
            if self.disconnect_error:
                print(f"error: disconnect detail: {self.disconnect_error}", file=self.stderr)
            return ExitCode.FAILURE
        if not outcome.threshold_failures:
            logger.info("run completed", thresholds="pass", frames_total=len(self.frames))
            print("thresholds: pass", file=self.stdout)
            return ExitCode.SUCCESS

        logger.warning(
            "run completed with threshold failures",
            thresholds="fail",
            failure_count=len(outcome.threshold_failures),
        )
        print(f"thresholds: fail count={len(outcome.threshold_failures)}", file=self.stdout)
        for failure in outcome.threshold_failures:
            print(f"threshold failed: {failure}", file=self.stderr)
        return ExitCode.THRESHOLDS_FAILED

    # ------------------------------------------------------------------
    # Entry point

    async def execute(self) -> RunOutcome:
        self.interrupt.install()
        try:
            self._prepare()
            await self._initialize_artifacts()
            await self._configure_backend()
            await self._start_stream()
            await self._stream()
            if self.outcome.soak_paused:
                await self._pause_soak()
                self._print_pause_summary()
                self.outcome.exit_code = ExitCode.SUCCESS
            else:
                await self._stop_stream()
                await self._finalize()
                self._print_summary()
                self.outcome.exit_code = self._resolve_exit_code()
        except RunAborted as e:
            await self._stop_backend_if_started()
            print(f"error: {e}", file=self.stderr)
            self.outcome.exit_code = e.exit_code
        finally:
            self.interrupt.uninstall()
            self.lifecycle.teardown()
            if self.backend is not None:
                self.backend.close()
            set_run_id(None)
        return self.outcome


async def execute_run(
    options: RunOptions,
    *,
    clock: Optional[CaptureClock] = None,
    backend_factory: Optional[BackendFactory] = None,
    interrupt: Optional[InterruptFlag] = None,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
) -> RunOutcome:
    """Execute one scenario run and return its outcome (never raises LabOpsError)."""
    executor = RunExecutor(
        options,
        clock=clock,
        backend_factory=backend_factory,
        interrupt=interrupt,
        stdout=stdout,
        stderr=stderr,
    )
    return await executor.execute()


__all__ = [
    "DEFAULT_CHECKPOINT_INTERVAL_MS",
    "DeviceSelection",
    "InterruptFlag",
    "RunAborted",
    "RunExecutor",
    "RunOptions",
    "RunOutcome",
    "execute_run",
    "make_run_id",
    "resolve_device_selection",
    "validate_scenario_path",
]
