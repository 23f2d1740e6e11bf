"""Operator-facing anomaly highlights derived from an :class:`FpsReport`.

Named heuristics run first, then generic signal notes, then threshold
violations. The combined list is de-duplicated in first-seen order and
capped so reports stay short.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from labops.core.time_utils import to_epoch_millis
from labops.metrics.fps import FpsReport

MAX_ANOMALY_HIGHLIGHTS = 3
NO_ANOMALIES_TEXT = "No notable anomalies detected by current heuristics."

HEURISTIC_RESEND_SPIKE = "resend_spike"
HEURISTIC_JITTER_CLIFF = "jitter_cliff"
HEURISTIC_PERIODIC_STALL = "periodic_stall"


@dataclass(frozen=True)
class HeuristicFinding:
    heuristic_id: str
    message: str


def _resend_spike(report: FpsReport, configured_fps: int) -> Optional[str]:
    if len(report.rolling_samples) < 10:
        return None

    fps_values = [s.fps for s in report.rolling_samples]
    peak = max(fps_values)
    median = float(np.median(fps_values))
    if median <= 0.0:
        return None

    ratio = peak / median
    by_shape = ratio >= 1.70
    by_config = configured_fps > 0 and peak >= configured_fps * 1.40
    jitter = report.inter_frame_jitter_us
    corroborated = report.dropped_frames_total > 0 or (
        jitter.sample_count > 0 and jitter.avg_us > 0.0 and jitter.p95_us >= jitter.avg_us * 2.50
    )
    if not (by_shape or by_config) or not corroborated:
        return None
    return (
        f"Resend spike detected: rolling FPS peak {peak:.2f} exceeded stable median "
        f"{median:.2f} ({ratio:.2f}x)."
    )


def _jitter_cliff(report: FpsReport, configured_fps: int) -> Optional[str]:
    jitter = report.inter_frame_jitter_us
    if jitter.sample_count < 10 or jitter.avg_us <= 0.0:
        return None

    ratio = jitter.p95_us / jitter.avg_us
    expected_interval_us = 1_000_000.0 / configured_fps if configured_fps > 0 else 0.0
    floor_us = max(2_000.0, expected_interval_us * 0.15)
    if ratio < 4.00 or jitter.p95_us < floor_us:
        return None
    return (
        f"Jitter cliff detected: jitter p95 {jitter.p95_us:.1f}us is {ratio:.2f}x "
        f"avg jitter {jitter.avg_us:.1f}us."
    )


def _periodic_stall(report: FpsReport, configured_fps: int) -> Optional[str]:
    window_ms = report.rolling_window_ms
    if configured_fps <= 0 or len(report.rolling_samples) < 20 or window_ms <= 0:
        return None

    stall_fps = configured_fps * 0.35
    min_separation_ms = max(window_ms // 2, 200)

    events: List[int] = []
    for sample in report.rolling_samples:
        if sample.fps > stall_fps:
            continue
        ts_ms = to_epoch_millis(sample.window_end)
        if events and ts_ms - events[-1] < min_separation_ms:
            continue
        events.append(ts_ms)

    if len(events) < 3:
        return None

    intervals = [float(events[i] - events[i - 1]) for i in range(1, len(events))]
    mean = sum(intervals) / len(intervals)
    if mean < window_ms:
        return None
    if max(intervals) - min(intervals) > mean * 0.35:
        return None
    return (
        f"Periodic stall detected: low-throughput valleys repeat roughly every "
        f"{mean:.0f}ms ({len(events)} events)."
    )


def detect_heuristics(report: FpsReport, configured_fps: int) -> List[HeuristicFinding]:
    """Return the named heuristics that fired, in priority order."""
    findings: List[HeuristicFinding] = []
    for heuristic_id, detector in (
        (HEURISTIC_RESEND_SPIKE, _resend_spike),
        (HEURISTIC_JITTER_CLIFF, _jitter_cliff),
        (HEURISTIC_PERIODIC_STALL, _periodic_stall),
    ):
        message = detector(report, configured_fps)
        if message is not None:
            findings.append(HeuristicFinding(heuristic_id, message))
    return findings


def _signal_notes(report: FpsReport, configured_fps: int) -> List[str]:
    notes: List[str] = []
    if report.received_frames_total == 0:
        notes.append("No frames were received during the run.")

    if report.dropped_frames_total > 0:
        notes.append(
            f"Dropped {report.dropped_frames_total} of {report.frames_total} frames "
            f"({report.drop_rate_percent:.2f}%). breakdown: "
            f"generic={report.dropped_generic_frames_total}, "
            f"timeout={report.timeout_frames_total}, "
            f"incomplete={report.incomplete_frames_total}."
        )

    if configured_fps <= 0:
        return notes

    expected_interval_us = 1_000_000.0 / configured_fps
    if report.avg_fps + 1e-9 < configured_fps * 0.90:
        notes.append(
            f"Average FPS {report.avg_fps:.2f} is below 90% of configured FPS {configured_fps}."
        )

    interval = report.inter_frame_interval_us
    if interval.sample_count > 0 and interval.p95_us > expected_interval_us * 1.50:
        notes.append(
            f"Inter-frame interval p95 {interval.p95_us:.1f}us is >150% of expected cadence "
            f"{expected_interval_us:.1f}us."
        )

    jitter = report.inter_frame_jitter_us
    if jitter.sample_count > 0 and jitter.p95_us > expected_interval_us * 0.50:
        notes.append(
            f"Inter-frame jitter p95 {jitter.p95_us:.1f}us is high relative to expected cadence "
            f"{expected_interval_us:.1f}us."
        )
    return notes


def build_anomaly_highlights(
    report: FpsReport,
    configured_fps: int,
    threshold_failures: Sequence[str] = (),
) -> List[str]:
    anomalies = [finding.message for finding in detect_heuristics(report, configured_fps)]
    anomalies.extend(_signal_notes(report, configured_fps))
    anomalies.extend(f"Threshold violation: {failure}" for failure in threshold_failures)
    if not anomalies:
        anomalies.append(NO_ANOMALIES_TEXT)

    # dict keeps first-seen order
    deduped = list(dict.fromkeys(anomalies))
    return deduped[:MAX_ANOMALY_HIGHLIGHTS]


__all__ = [
    "HEURISTIC_JITTER_CLIFF",
    "HEURISTIC_PERIODIC_STALL",
    "HEURISTIC_RESEND_SPIKE",
    "HeuristicFinding",
    "MAX_ANOMALY_HIGHLIGHTS",
    "NO_ANOMALIES_TEXT",
    "build_anomaly_highlights",
    "detect_heuristics",
]
