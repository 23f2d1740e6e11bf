"""Throughput, drop and cadence statistics for one run's frame samples.

Samples are consumed in the order the backend produced them; the engine
never re-sorts. Only received samples contribute to FPS and cadence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import numpy as np

from labops.backends.base import FrameOutcome, FrameSample
from labops.core.errors import MetricsError

DEFAULT_ROLLING_WINDOW_MS = 1000
DEFAULT_ROLLING_STEP_MS = 200


@dataclass
class PercentileStats:
    sample_count: int = 0
    min_us: float = 0.0
    avg_us: float = 0.0
    p95_us: float = 0.0


@dataclass
class RollingSample:
    window_end: datetime
    frames_in_window: int
    fps: float


@dataclass
class FpsReport:
    avg_window_ms: int = 0
    rolling_window_ms: int = 0
    rolling_step_ms: int = 0
    frames_total: int = 0
    received_frames_total: int = 0
    dropped_frames_total: int = 0
    dropped_generic_frames_total: int = 0
    timeout_frames_total: int = 0
    incomplete_frames_total: int = 0
    drop_rate_percent: float = 0.0
    generic_drop_rate_percent: float = 0.0
    timeout_rate_percent: float = 0.0
    incomplete_rate_percent: float = 0.0
    avg_fps: float = 0.0
    inter_frame_interval_us: PercentileStats = field(default_factory=PercentileStats)
    inter_frame_jitter_us: PercentileStats = field(default_factory=PercentileStats)
    rolling_samples: List[RollingSample] = field(default_factory=list)


def compute_percentile_stats(values: Sequence[float]) -> PercentileStats:
    if not values:
        return PercentileStats()
    arr = np.asarray(values, dtype=np.float64)
    return PercentileStats(
        sample_count=int(arr.size),
        min_us=float(arr.min()),
        avg_us=float(arr.mean()),
        p95_us=float(np.percentile(arr, 95)),
    )


def _rate(part: int, total: int) -> float:
    return (100.0 * part / total) if total > 0 else 0.0


def _micros(delta: timedelta) -> float:
    return delta / timedelta(microseconds=1)



def _rolling_samples(
    received: Sequence[datetime],
    session_start: datetime,
    total_duration_ms: int,
    window_ms: int,
    step_ms: int,
) -> List[RollingSample]:
    window = timedelta(milliseconds=window_ms)
    window_seconds = window_ms / 1000.0
    session_end = session_start + timedelta(milliseconds=total_duration_ms)
    samples: List[RollingSample] = []
    k = 0
    while True:
        start = session_start + timedelta(milliseconds=k * step_ms)
        end = start + window
        if end > session_end:
            break
        count = sum(1 for ts in received if start <= ts < end)
        samples.append(RollingSample(window_end=end, frames_in_window=count, fps=count / window_seconds))
        k += 1
    return samples


def compute_fps_report(
    frames: Sequence[FrameSample],
    total_duration_ms: int,
    rolling_window_ms: int = DEFAULT_ROLLING_WINDOW_MS,
    rolling_step_ms: Optional[int] = None,
    session_start: Optional[datetime] = None,
) -> FpsReport:
    """Aggregate ``frames`` into an :class:`FpsReport`.

    Args:
        frames: Samples in acquisition order.
        total_duration_ms: Session length used for average FPS and for
            laying out rolling windows.
        rolling_window_ms: Rolling window length.
        rolling_step_ms: Distance between window starts; defaults to the
            window length (non-overlapping windows).
        session_start: Origin for rolling windows; defaults to the earliest
            sample timestamp.

    Raises:
        MetricsError: when a window or step is not positive.
    """
    if rolling_window_ms <= 0:
        raise MetricsError("rolling fps window must be greater than 0")
    step_ms = rolling_window_ms if rolling_step_ms is None else rolling_step_ms
    if step_ms <= 0:
        raise MetricsError("rolling fps step must be greater than 0")

    report = FpsReport(
        avg_window_ms=max(0, total_duration_ms),
        rolling_window_ms=rolling_window_ms,
        rolling_step_ms=step_ms,
    )
    received_ts: List[datetime] = []
    for sample in frames:
        report.frames_total += 1
        if sample.outcome is FrameOutcome.TIMEOUT:
            report.timeout_frames_total += 1
        elif sample.outcome is FrameOutcome.INCOMPLETE:
            report.incomplete_frames_total += 1
        elif sample.outcome is FrameOutcome.DROPPED or sample.is_dropped:
            report.dropped_generic_frames_total += 1
        else:
            report.received_frames_total += 1
            received_ts.append(sample.timestamp)

    report.dropped_frames_total = (
        report.dropped_generic_frames_total + report.timeout_frames_total + report.incomplete_frames_total
    )
    total = report.frames_total
    report.drop_rate_percent = _rate(report.dropped_frames_total, total)
    report.generic_drop_rate_percent = _rate(report.dropped_generic_frames_total, total)
    report.timeout_rate_percent = _rate(report.timeout_frames_total, total)
    report.incomplete_rate_percent = _rate(report.incomplete_frames_total, total)

    if total_duration_ms > 0:
        report.avg_fps = report.received_frames_total / (total_duration_ms / 1000.0)

    # out-of-order deliveries count as zero-length gaps
    intervals = [
        max(0.0, _micros(received_ts[i] - received_ts[i - 1])) for i in range(1, len(received_ts))
    ]
    jitter = [abs(intervals[i] - intervals[i - 1]) for i in range(1, len(intervals))]
    report.inter_frame_interval_us = compute_percentile_stats(intervals)
    report.inter_frame_jitter_us = compute_percentile_stats(jitter)

    if frames and total_duration_ms > 0:
        origin = session_start if session_start is not None else min(s.timestamp for s in frames)
        report.rolling_samples = _rolling_samples(
            received_ts, origin, total_duration_ms, rolling_window_ms, step_ms
        )
    return report


__all__ = [
    "DEFAULT_ROLLING_STEP_MS",
    "DEFAULT_ROLLING_WINDOW_MS",
    "FpsReport",
    "PercentileStats",
    "RollingSample",
    "compute_fps_report",
    "compute_percentile_stats",
]
