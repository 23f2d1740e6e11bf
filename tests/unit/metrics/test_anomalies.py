"""Unit tests for anomaly heuristics and highlight selection."""

from datetime import datetime, timedelta, timezone

from labops.metrics import FpsReport, PercentileStats, RollingSample, build_anomaly_highlights, compute_fps_report
from labops.metrics.anomalies import NO_ANOMALIES_TEXT, detect_heuristics
from tests.infrastructure.mocks.backend_mocks import make_frames

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def rolling(values, window_ms=1000):
    return [
        RollingSample(START + timedelta(milliseconds=window_ms * (i + 1)), int(v), float(v))
        for i, v in enumerate(values)
    ]


class TestHeuristics:

    def test_resend_spike(self):
        report = FpsReport(
            rolling_window_ms=1000,
            rolling_samples=rolling([30] * 9 + [60]),
            dropped_frames_total=1,
        )
        findings = detect_heuristics(report, 30)
        assert [f.heuristic_id for f in findings] == ["resend_spike"]
        assert "rolling FPS peak 60.00 exceeded stable median 30.00 (2.00x)" in findings[0].message

    def test_resend_spike_needs_corroboration(self):
        report = FpsReport(rolling_window_ms=1000, rolling_samples=rolling([30] * 9 + [60]))
        assert detect_heuristics(report, 30) == []

    def test_jitter_cliff(self):
        report = FpsReport(inter_frame_jitter_us=PercentileStats(20, 0.0, 1000.0, 6000.0))
        findings = detect_heuristics(report, 30)
        assert [f.heuristic_id for f in findings] == ["jitter_cliff"]

    def test_periodic_stall(self):
        values = [30] * 20
        for i in (4, 9, 14):
            values[i] = 5
        report = FpsReport(rolling_window_ms=1000, rolling_samples=rolling(values))
        findings = detect_heuristics(report, 30)
        assert [f.heuristic_id for f in findings] == ["periodic_stall"]
        assert "roughly every 5000ms (3 events)" in findings[0].message

    def test_no_heuristics_for_clean_run(self):
        report = compute_fps_report(make_frames(30, fps=30), 1000)
        assert detect_heuristics(report, 30) == []

    def test_all_three_fire_in_priority_order(self):
        values = [30] * 35
        for i in (5, 15, 25):
            values[i] = 5
            values[i + 1] = 58
        report = FpsReport(
            rolling_window_ms=1000,
            rolling_step_ms=200,
            rolling_samples=rolling(values, window_ms=200),
            inter_frame_jitter_us=PercentileStats(250, 0.0, 900.0, 5200.0),
        )
        findings = detect_heuristics(report, 30)
        assert [f.heuristic_id for f in findings] == ["resend_spike", "jitter_cliff", "periodic_stall"]
        assert "roughly every 2000ms (3 events)" in findings[2].message

        highlights = build_anomaly_highlights(report, 30, ["avg_fps actual=0 is below minimum=25"])
        assert highlights == [f.message for f in findings]


class TestAnomalyHighlights:

    def test_clean_run_placeholder(self):
        report = compute_fps_report(make_frames(30, fps=30), 1000)
        assert build_anomaly_highlights(report, 30) == [NO_ANOMALIES_TEXT]

    def test_drop_note_first_and_capped(self):
        report = compute_fps_report(make_frames(10, fps=10, drop_ids=[3]), 1000)
        highlights = build_anomaly_highlights(report, 10, ["drop_rate_percent actual=10 exceeds"])
        assert highlights[0] == (
            "Dropped 1 of 10 frames (10.00%). breakdown: generic=1, timeout=0, incomplete=0."
        )
        assert len(highlights) == 3

    def test_threshold_failures_deduplicated(self):
        report = compute_fps_report(make_frames(30, fps=30), 1000)
        highlights = build_anomaly_highlights(report, 30, ["x", "x"])
        assert highlights == ["Threshold violation: x"]

    def test_no_frames_note(self):
        report = compute_fps_report([], 1000)
        assert build_anomaly_highlights(report, 0)[0] == "No frames were received during the run."
