"""Requested-versus-actual camera configuration artifacts.

``config_verify.json`` lists every readback row, ``config_report.md`` is the
human table, and ``camera_config.json`` captures device identity, a fixed
set of curated knobs, and the raw backend dump.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from labops.artifacts.run_writer import RunInfo
from labops.backends.real_sdk.apply_params import (
    ApplyParamInput,
    ApplyParamsResult,
    ParamApplyMode,
    ReadbackRow,
)
from labops.core.atomic_write import atomic_write_text, ensure_output_dir
from labops.core.time_utils import format_utc_timestamp

CONFIG_VERIFY_FILENAME = "config_verify.json"
CONFIG_REPORT_FILENAME = "config_report.md"
CAMERA_CONFIG_FILENAME = "camera_config.json"

CURATED_KEYS = (
    "frame_rate",
    "pixel_format",
    "exposure",
    "gain",
    "trigger_mode",
    "trigger_source",
    "trigger_activation",
    "roi_width",
    "roi_height",
    "roi_offset_x",
    "roi_offset_y",
    "packet_size_bytes",
    "inter_packet_delay_us",
)

ICON_APPLIED = "✅"
ICON_ADJUSTED = "⚠"
ICON_UNSUPPORTED = "❌"


def _dump_json(data: Mapping[str, Any]) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def _non_empty(value: Optional[str]) -> Optional[str]:
    if value is None or value == "" or value == "(none)":
        return None
    return value


def write_config_verify_json(
    run_info: RunInfo,
    result: ApplyParamsResult,
    mode: ParamApplyMode,
    output_dir: Union[str, Path],
) -> Path:
    rows = result.readback_rows
    supported = sum(1 for row in rows if row.supported)
    applied = sum(1 for row in rows if row.applied)
    adjusted = sum(1 for row in rows if row.adjusted)
    data = {
        "schema_version": "1.0",
        "run_id": run_info.run_id,
        "scenario_id": run_info.config.scenario_id,
        "backend": run_info.config.backend,
        "apply_mode": mode.value,
        "summary": {
            "requested_count": len(rows),
            "supported_count": supported,
            "unsupported_count": len(rows) - supported,
            "applied_count": applied,
            "unapplied_count": len(rows) - applied,
            "adjusted_count": adjusted,
        },
        "rows": [
            {
                "generic_key": row.generic_key,
                "node_name": _non_empty(row.node_name),
                "requested": row.requested_value,
                "actual": _non_empty(row.actual_value),
                "supported": row.supported,
                "applied": row.applied,
                "adjusted": row.adjusted,
                "reason": _non_empty(row.reason),
            }
            for row in rows
        ],
    }
    out_dir = ensure_output_dir(output_dir)
    return atomic_write_text(out_dir / CONFIG_VERIFY_FILENAME, _dump_json(data))


@dataclass
class _ReportRow:
    generic_key: str
    node_name: str
    requested: str
    actual: str
    icon: str
    status: str
    notes: str


def escape_markdown_cell(value: str) -> str:
    return value.replace("\r", " ").replace("\n", " ").replace("|", "\\|")


def _cell(value: Optional[str]) -> str:
    return value if value else "-"


def _requested_lookup(params: Sequence[ApplyParamInput]) -> Dict[str, str]:
    # last value wins for duplicate keys
    return {p.generic_key: p.requested_value for p in params if p.generic_key}


def _report_rows(params: Sequence[ApplyParamInput], result: ApplyParamsResult) -> List[_ReportRow]:
    requested_by_key = _requested_lookup(params)
    rows: List[_ReportRow] = []
    for readback in result.readback_rows:
        if not readback.supported or not readback.applied:
            icon, status, notes = ICON_UNSUPPORTED, "unsupported", _cell(readback.reason)
        elif readback.adjusted:
            icon, status = ICON_ADJUSTED, "adjusted"
            notes = readback.reason or "adjusted due to backend constraints"
        else:
            icon, status, notes = ICON_APPLIED, "applied", _cell(readback.reason)

        requested = requested_by_key.get(readback.generic_key) or _cell(readback.requested_value)
        rows.append(
            _ReportRow(
                generic_key=readback.generic_key or "-",
                node_name=_cell(readback.node_name),
                requested=requested,
                actual=_cell(readback.actual_value),
                icon=icon,
                status=status,
                notes=notes,
            )
        )
    rows.sort(key=lambda row: (row.generic_key, row.node_name))
    return rows


def render_config_report(
    run_info: RunInfo,
    params: Sequence[ApplyParamInput],
    result: ApplyParamsResult,
    mode: ParamApplyMode,
    collection_error: str = "",
) -> str:
    rows = _report_rows(params, result)
    lines = [
        "# Config Report",
        "",
        "## Run",
        "",
        f"- run_id: `{run_info.run_id}`",
        f"- scenario_id: `{run_info.config.scenario_id}`",
        f"- backend: `{run_info.config.backend}`",
        f"- apply_mode: `{mode.value}`",
        f"- started_at_utc: `{format_utc_timestamp(run_info.timestamps.started_at)}`",
        f"- finished_at_utc: `{format_utc_timestamp(run_info.timestamps.finished_at)}`",
        "",
    ]
    if collection_error:
        lines += [
            "## Collection Notes",
            "",
            f"- config collection error: {escape_markdown_cell(collection_error)}",
            "",
        ]

    applied = sum(1 for row in rows if row.status == "applied")
    adjusted = sum(1 for row in rows if row.status == "adjusted")
    lines += [
        "## Summary",
        "",
        f"- {ICON_APPLIED} applied: {applied}",
        f"- {ICON_ADJUSTED} adjusted: {adjusted}",
        f"- {ICON_UNSUPPORTED} unsupported: {len(rows) - applied - adjusted}",
        "",
        "## Config Table",
        "",
        "| Status | Key | Node | Requested | Actual | Notes |",
        "| --- | --- | --- | --- | --- | --- |",
    ]
    if not rows:
        lines.append(f"| {ICON_UNSUPPORTED} unsupported | - | - | - | - | no config rows were captured |")
    for row in rows:
        cells = [row.generic_key, row.node_name, row.requested, row.actual, _cell(row.notes)]
        lines.append(
            f"| {row.icon} {row.status} | " + " | ".join(escape_markdown_cell(c) for c in cells) + " |"
        )
    lines.append("")
    return "\n".join(lines) + "\n"


def write_config_report_markdown(
    run_info: RunInfo,
    params: Sequence[ApplyParamInput],
    result: ApplyParamsResult,
    mode: ParamApplyMode,
    output_dir: Union[str, Path],
    collection_error: str = "",
) -> Path:
    text = render_config_report(run_info, params, result, mode, collection_error)
    out_dir = ensure_output_dir(output_dir)
    return atomic_write_text(out_dir / CONFIG_REPORT_FILENAME, text)


def _curated_rows(
    requested_by_key: Mapping[str, str],
    readback_by_key: Mapping[str, ReadbackRow],
    missing_keys: List[str],
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for key in CURATED_KEYS:
        requested = _non_empty(requested_by_key.get(key))
        readback = readback_by_key.get(key)
        if readback is None:
            missing_keys.append(key)
            rows.append(
                {
                    "generic_key": key,
                    "node_name": None,
                    "requested": requested,
                    "actual": None,
                    "supported": False,
                    "applied": False,
                    "adjusted": False,
                    "missing": True,
                    "reason": (
                        "requested key did not produce a readback row"
                        if requested is not None
                        else "key not requested by scenario"
                    ),
                }
            )
            continue
        rows.append(
            {
                "generic_key": key,
                "node_name": _non_empty(readback.node_name),
                "requested": requested if requested is not None else _non_empty(readback.requested_value),
                "actual": _non_empty(readback.actual_value),
                "supported": readback.supported,
                "applied": readback.applied,
                "adjusted": readback.adjusted,
                "missing": False,
                "reason": _non_empty(readback.reason),
            }
        )
    return rows


def write_camera_config_json(
    run_info: RunInfo,
    backend_dump: Mapping[str, str],
    params: Sequence[ApplyParamInput],
    result: ApplyParamsResult,
    mode: ParamApplyMode,
    output_dir: Union[str, Path],
    collection_error: str = "",
) -> Path:
    requested_by_key = _requested_lookup(params)
    readback_by_key = {row.generic_key: row for row in result.readback_rows if row.generic_key}

    missing_keys: List[str] = []
    curated = _curated_rows(requested_by_key, readback_by_key, missing_keys)
    unsupported_keys = sorted(
        {key for key, row in readback_by_key.items() if not row.supported or not row.applied}
    )
    missing_requested = sorted(key for key in requested_by_key if key not in readback_by_key)

    def identity(dump_key: str, known: Optional[str] = None) -> Optional[str]:
        return _non_empty(known) or _non_empty(backend_dump.get(dump_key))

    real = run_info.real_device
    data = {
        "schema_version": "1.0",
        "run_id": run_info.run_id,
        "scenario_id": run_info.config.scenario_id,
        "backend": run_info.config.backend,
        "apply_mode": mode.value,
        "collection_error": collection_error or None,
        "identity": {
            "model": identity("device.model", real.model if real else None),
            "serial": identity("device.serial", real.serial if real else None),
            "transport": identity("device.transport", real.transport if real else None),
            "user_id": identity("device.user_id", real.user_id if real else None),
            "firmware_version": identity("device.firmware_version", real.firmware_version if real else None),
            "sdk_version": identity("device.sdk_version", real.sdk_version if real else None),
            "selector": identity("device.selector"),
            "index": identity("device.index"),
            "ip": identity("device.ip"),
            "mac": identity("device.mac"),
        },
        "curated_nodes": curated,
        "missing_keys": sorted(set(missing_keys)),
        "missing_requested_keys": missing_requested,
        "unsupported_keys": unsupported_keys,
        "backend_dump": {key: backend_dump[key] for key in sorted(backend_dump)},
    }
    out_dir = ensure_output_dir(output_dir)
    return atomic_write_text(out_dir / CAMERA_CONFIG_FILENAME, _dump_json(data))


__all__ = [
    "CAMERA_CONFIG_FILENAME",
    "CONFIG_REPORT_FILENAME",
    "CONFIG_VERIFY_FILENAME",
    "CURATED_KEYS",
    "escape_markdown_cell",
    "render_config_report",
    "write_camera_config_json",
    "write_config_report_markdown",
    "write_config_verify_json",
]
