"""Pass/fail judgement of a run against scenario thresholds."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from labops.metrics.fps import FpsReport

_TOLERANCE = 1e-9


@dataclass
class RunThresholds:
    min_avg_fps: Optional[float] = None
    max_drop_rate_percent: Optional[float] = None
    max_inter_frame_interval_p95_us: Optional[float] = None
    max_inter_frame_jitter_p95_us: Optional[float] = None
    max_disconnect_count: Optional[int] = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.min_avg_fps,
                self.max_drop_rate_percent,
                self.max_inter_frame_interval_p95_us,
                self.max_inter_frame_jitter_p95_us,
                self.max_disconnect_count,
            )
        )


def _check_min(failures: List[str], label: str, actual: float, minimum: Optional[float]) -> None:
    if minimum is not None and actual + _TOLERANCE < minimum:
        failures.append(f"{label} actual={actual:.6f} is below minimum={minimum:.6f}")


def _check_max(failures: List[str], label: str, actual: float, maximum: Optional[float]) -> None:
    if maximum is not None and actual - _TOLERANCE > maximum:
        failures.append(f"{label} actual={actual:.6f} exceeds maximum={maximum:.6f}")


def evaluate_thresholds(
    thresholds: RunThresholds,
    report: FpsReport,
    disconnect_count: int = 0,
) -> List[str]:
    """Return one human-readable line per violated threshold; empty means pass."""
    failures: List[str] = []
    _check_min(failures, "avg_fps", report.avg_fps, thresholds.min_avg_fps)
    _check_max(failures, "drop_rate_percent", report.drop_rate_percent, thresholds.max_drop_rate_percent)
    _check_max(
        failures,
        "inter_frame_interval_p95_us",
        report.inter_frame_interval_us.p95_us,
        thresholds.max_inter_frame_interval_p95_us,
    )
    _check_max(
        failures,
        "inter_frame_jitter_p95_us",
        report.inter_frame_jitter_us.p95_us,
        thresholds.max_inter_frame_jitter_p95_us,
    )
    if thresholds.max_disconnect_count is not None and disconnect_count > thresholds.max_disconnect_count:
        failures.append(
            f"disconnect_count actual={disconnect_count} exceeds maximum={thresholds.max_disconnect_count}"
        )
    return failures


__all__ = ["RunThresholds", "evaluate_thresholds"]
