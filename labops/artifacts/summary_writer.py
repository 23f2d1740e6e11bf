from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Union

from labops.artifacts.run_writer import RunInfo
from labops.core.atomic_write import atomic_write_text, ensure_output_dir
from labops.core.time_utils import format_utc_timestamp
from labops.metrics.fps import FpsReport

SUMMARY_FILENAME = "summary.md"


def _device_section(run_info: RunInfo) -> List[str]:
    lines: List[str] = []
    real = run_info.real_device
    webcam = run_info.webcam_device
    if real is None and webcam is None:
        return lines

    lines += ["## Device Selection", ""]
    if real is not None:
        lines += [
            "- backend_device_type: `real`",
            f"- model: `{real.model}`",
            f"- serial: `{real.serial}`",
            f"- transport: `{real.transport}`",
        ]
        if real.user_id is not None:
            lines.append(f"- user_id: `{real.user_id}`")
        if real.firmware_version is not None:
            lines.append(f"- firmware_version: `{real.firmware_version}`")
        if real.sdk_version is not None:
            lines.append(f"- sdk_version: `{real.sdk_version}`")
        lines.append("")
    if webcam is not None:
        lines += [
            "- backend_device_type: `webcam`",
            f"- webcam_device_id: `{webcam.device_id}`",
            f"- webcam_friendly_name: `{webcam.friendly_name}`",
        ]
        if webcam.bus_info is not None:
            lines.append(f"- webcam_bus_info: `{webcam.bus_info}`")
        if webcam.selector_text is not None:
            lines.append(f"- webcam_selector: `{webcam.selector_text}`")
        if webcam.selection_rule is not None:
            lines.append(f"- webcam_selection_rule: `{webcam.selection_rule}`")
        if webcam.discovered_index is not None:
            lines.append(f"- webcam_index: `{webcam.discovered_index}`")
        lines.append("")
    return lines


def render_run_summary(
    run_info: RunInfo,
    report: FpsReport,
    configured_fps: int,
    threshold_failures: Sequence[str],
    top_anomalies: Sequence[str],
) -> str:
    """Short triage-oriented markdown: status, identity, key metrics, anomalies."""
    passed = not threshold_failures
    metric_rows = [
        ("configured_fps", str(configured_fps)),
        ("avg_fps", f"{report.avg_fps:.3f}"),
        ("frames_total", str(report.frames_total)),
        ("received_frames_total", str(report.received_frames_total)),
        ("dropped_frames_total", str(report.dropped_frames_total)),
        ("dropped_generic_frames_total", str(report.dropped_generic_frames_total)),
        ("timeout_frames_total", str(report.timeout_frames_total)),
        ("incomplete_frames_total", str(report.incomplete_frames_total)),
        ("drop_rate_percent", f"{report.drop_rate_percent:.3f}"),
        ("generic_drop_rate_percent", f"{report.generic_drop_rate_percent:.3f}"),
        ("timeout_rate_percent", f"{report.timeout_rate_percent:.3f}"),
        ("incomplete_rate_percent", f"{report.incomplete_rate_percent:.3f}"),
        ("inter_frame_interval_p95_us", f"{report.inter_frame_interval_us.p95_us:.3f}"),
        ("inter_frame_jitter_p95_us", f"{report.inter_frame_jitter_us.p95_us:.3f}"),
    ]

    lines = [
        "# Run Summary",
        "",
        "## Status",
        "",
        f"**{'PASS' if passed else 'FAIL'}**",
        "",
        "## Run Identity",
        "",
        f"- run_id: `{run_info.run_id}`",
        f"- scenario_id: `{run_info.config.scenario_id}`",
        f"- backend: `{run_info.config.backend}`",
        f"- seed: `{run_info.config.seed}`",
        f"- duration_ms: `{run_info.config.duration_ms}`",
        f"- started_at_utc: `{format_utc_timestamp(run_info.timestamps.started_at)}`",
        f"- finished_at_utc: `{format_utc_timestamp(run_info.timestamps.finished_at)}`",
        "",
        "## Key Metrics",
        "",
        "| Metric | Value |",
        "| --- | --- |",
    ]
    lines += [f"| {name} | {value} |" for name, value in metric_rows]
    lines.append("")
    lines += _device_section(run_info)

    lines += ["## Threshold Checks", ""]
    if passed:
        lines.append("- All configured thresholds passed.")
    else:
        lines.append(f"- Threshold violations: {len(threshold_failures)}")
        lines += [f"- {failure}" for failure in threshold_failures]
    lines.append("")

    lines += ["## Top Anomalies", ""]
    if not top_anomalies:
        lines.append("1. No notable anomalies detected.")
    lines += [f"{i}. {anomaly}" for i, anomaly in enumerate(top_anomalies, start=1)]
    lines.append("")
    return "\n".join(lines) + "\n"


def write_run_summary_markdown(
    run_info: RunInfo,
    report: FpsReport,
    configured_fps: int,
    threshold_failures: Sequence[str],
    top_anomalies: Sequence[str],
    output_dir: Union[str, Path],
) -> Path:
    text = render_run_summary(run_info, report, configured_fps, threshold_failures, top_anomalies)
    out_dir = ensure_output_dir(output_dir)
    return atomic_write_text(out_dir / SUMMARY_FILENAME, text)


__all__ = ["SUMMARY_FILENAME", "render_run_summary", "write_run_summary_markdown"]
