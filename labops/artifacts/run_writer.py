"""Run identity record (``run.json``) and its companion scenario copy."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from labops.backends.real_sdk.transport_counters import TransportCountersSnapshot
from labops.core.atomic_write import atomic_write_bytes, atomic_write_text, ensure_output_dir
from labops.core.errors import ArtifactWriteError
from labops.core.time_utils import format_utc_timestamp

RUN_FILENAME = "run.json"
SCENARIO_FILENAME = "scenario.json"


@dataclass
class RunConfig:
    scenario_id: str
    backend: str
    seed: int = 0
    duration_ms: int = 0


@dataclass
class RunTimestamps:
    created_at: datetime
    started_at: datetime
    finished_at: datetime


@dataclass
class RealDeviceMetadata:
    model: str
    serial: str
    transport: str
    user_id: Optional[str] = None
    firmware_version: Optional[str] = None
    sdk_version: Optional[str] = None
    transport_counters: Optional[TransportCountersSnapshot] = None


@dataclass
class WebcamDeviceMetadata:
    device_id: str
    friendly_name: str
    bus_info: Optional[str] = None
    selector_text: Optional[str] = None
    selection_rule: Optional[str] = None
    discovered_index: Optional[int] = None


@dataclass
class RunInfo:
    run_id: str
    config: RunConfig
    timestamps: RunTimestamps
    real_device: Optional[RealDeviceMetadata] = None
    webcam_device: Optional[WebcamDeviceMetadata] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def run_info_to_dict(run_info: RunInfo) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "run_id": run_info.run_id,
        "config": {
            "scenario_id": run_info.config.scenario_id,
            "backend": run_info.config.backend,
            "seed": run_info.config.seed,
            "duration_ms": run_info.config.duration_ms,
        },
    }
    real = run_info.real_device
    if real is not None:
        real_data = _drop_none(
            {
                "model": real.model,
                "serial": real.serial,
                "transport": real.transport,
                "user_id": real.user_id,
                "firmware_version": real.firmware_version,
                "sdk_version": real.sdk_version,
            }
        )
        if real.transport_counters is not None:
            real_data["transport_counters"] = real.transport_counters.to_dict()
        data["real_device"] = real_data

    webcam = run_info.webcam_device
    if webcam is not None:
        data["webcam_device"] = _drop_none(
            {
                "device_id": webcam.device_id,
                "friendly_name": webcam.friendly_name,
                "bus_info": webcam.bus_info,
                "selector_text": webcam.selector_text,
                "selection_rule": webcam.selection_rule,
                "discovered_index": webcam.discovered_index,
            }
        )

    data.update(run_info.extra)
    data["timestamps"] = {
        "created_at_utc": format_utc_timestamp(run_info.timestamps.created_at),
        "started_at_utc": format_utc_timestamp(run_info.timestamps.started_at),
        "finished_at_utc": format_utc_timestamp(run_info.timestamps.finished_at),
    }
    return data


def write_run_json(run_info: RunInfo, output_dir: Union[str, Path]) -> Path:
    out_dir = ensure_output_dir(output_dir)
    text = json.dumps(run_info_to_dict(run_info), indent=2, ensure_ascii=False) + "\n"
    return atomic_write_text(out_dir / RUN_FILENAME, text)


def write_scenario_json(source_path: Union[str, Path], output_dir: Union[str, Path]) -> Path:
    """Copy the scenario file byte-for-byte into the bundle."""
    if not str(source_path):
        raise ArtifactWriteError("source scenario path cannot be empty")
    source = Path(source_path)
    if not source.exists():
        raise ArtifactWriteError(f"source scenario file not found: {source}")
    if not source.is_file():
        raise ArtifactWriteError(f"source scenario path must be a regular file: {source}")
    try:
        payload = source.read_bytes()
    except OSError as e:
        raise ArtifactWriteError(f"failed to open source scenario file '{source}': {e}") from e

    out_dir = ensure_output_dir(output_dir)
    return atomic_write_bytes(out_dir / SCENARIO_FILENAME, payload)


__all__ = [
    "RUN_FILENAME",
    "SCENARIO_FILENAME",
    "RealDeviceMetadata",
    "RunConfig",
    "RunInfo",
    "RunTimestamps",
    "WebcamDeviceMetadata",
    "run_info_to_dict",
    "write_run_json",
    "write_scenario_json",
]
