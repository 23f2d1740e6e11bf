"""metrics.csv / metrics.json serialization of an :class:`FpsReport`."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Union

from labops.core.atomic_write import atomic_write_text, ensure_output_dir
from labops.core.time_utils import format_fixed, to_epoch_millis
from labops.metrics.fps import FpsReport, PercentileStats

METRICS_CSV_FILENAME = "metrics.csv"
METRICS_JSON_FILENAME = "metrics.json"


def render_metrics_csv(report: FpsReport) -> str:
    f = format_fixed
    total = report.frames_total
    rows: List[str] = [
        "metric,window_end_ms,window_ms,frames,fps",
        f"avg_fps,,{report.avg_window_ms},{report.received_frames_total},{f(report.avg_fps)}",
        f"drops_total,,,{total},{report.dropped_frames_total}",
        f"drops_generic_total,,,{total},{report.dropped_generic_frames_total}",
        f"timeouts_total,,,{total},{report.timeout_frames_total}",
        f"incomplete_total,,,{total},{report.incomplete_frames_total}",
        f"drop_rate_percent,,,{total},{f(report.drop_rate_percent)}",
        f"generic_drop_rate_percent,,,{total},{f(report.generic_drop_rate_percent)}",
        f"timeout_rate_percent,,,{total},{f(report.timeout_rate_percent)}",
        f"incomplete_rate_percent,,,{total},{f(report.incomplete_rate_percent)}",
    ]
    for sample in report.rolling_samples:
        rows.append(
            f"rolling_fps,{to_epoch_millis(sample.window_end)},{report.rolling_window_ms},"
            f"{sample.frames_in_window},{f(sample.fps)}"
        )
    for prefix, stats in (
        ("inter_frame_interval", report.inter_frame_interval_us),
        ("inter_frame_jitter", report.inter_frame_jitter_us),
    ):
        rows.append(f"{prefix}_min_us,,,{stats.sample_count},{f(stats.min_us)}")
        rows.append(f"{prefix}_avg_us,,,{stats.sample_count},{f(stats.avg_us)}")
        rows.append(f"{prefix}_p95_us,,,{stats.sample_count},{f(stats.p95_us)}")
    return "\n".join(rows) + "\n"


def _fixed(value: float) -> float:
    return round(value, 6)


def _timing_stats(stats: PercentileStats) -> Dict[str, Any]:
    return {
        "sample_count": stats.sample_count,
        "min_us": _fixed(stats.min_us),
        "avg_us": _fixed(stats.avg_us),
        "p95_us": _fixed(stats.p95_us),
    }


def render_metrics_json(report: FpsReport) -> str:
    """Stable-key JSON; doubles are rounded to six decimals."""
    document = {
        "avg_window_ms": report.avg_window_ms,
        "rolling_window_ms": report.rolling_window_ms,
        "rolling_step_ms": report.rolling_step_ms,
        "frames_total": report.frames_total,
        "received_frames_total": report.received_frames_total,
        "dropped_frames_total": report.dropped_frames_total,
        "dropped_generic_frames_total": report.dropped_generic_frames_total,
        "timeout_frames_total": report.timeout_frames_total,
        "incomplete_frames_total": report.incomplete_frames_total,
        "drop_rate_percent": _fixed(report.drop_rate_percent),
        "generic_drop_rate_percent": _fixed(report.generic_drop_rate_percent),
        "timeout_rate_percent": _fixed(report.timeout_rate_percent),
        "incomplete_rate_percent": _fixed(report.incomplete_rate_percent),
        "avg_fps": _fixed(report.avg_fps),
        "inter_frame_interval_us": _timing_stats(report.inter_frame_interval_us),
        "inter_frame_jitter_us": _timing_stats(report.inter_frame_jitter_us),
        "rolling_fps": [
            {
                "window_end_ms": to_epoch_millis(sample.window_end),
                "frames_in_window": sample.frames_in_window,
                "fps": _fixed(sample.fps),
            }
            for sample in report.rolling_samples
        ],
    }
    return json.dumps(document, indent=2, ensure_ascii=False, separators=(",", ":")) + "\n"


def write_metrics_csv(report: FpsReport, output_dir: Union[str, Path]) -> Path:
    out_dir = ensure_output_dir(output_dir)
    return atomic_write_text(out_dir / METRICS_CSV_FILENAME, render_metrics_csv(report))


def write_metrics_json(report: FpsReport, output_dir: Union[str, Path]) -> Path:
    out_dir = ensure_output_dir(output_dir)
    return atomic_write_text(out_dir / METRICS_JSON_FILENAME, render_metrics_json(report))


__all__ = [
    "METRICS_CSV_FILENAME",
    "METRICS_JSON_FILENAME",
    "render_metrics_csv",
    "render_metrics_json",
    "write_metrics_csv",
    "write_metrics_json",
]
