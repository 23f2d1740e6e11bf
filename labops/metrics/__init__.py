from .anomalies import HeuristicFinding, build_anomaly_highlights, detect_heuristics
from .fps import (
    DEFAULT_ROLLING_STEP_MS,
    DEFAULT_ROLLING_WINDOW_MS,
    FpsReport,
    PercentileStats,
    RollingSample,
    compute_fps_report,
)
from .thresholds import RunThresholds, evaluate_thresholds
from .writers import write_metrics_csv, write_metrics_json

__all__ = [
    "DEFAULT_ROLLING_STEP_MS",
    "DEFAULT_ROLLING_WINDOW_MS",
    "FpsReport",
    "HeuristicFinding",
    "PercentileStats",
    "RollingSample",
    "RunThresholds",
    "build_anomaly_highlights",
    "compute_fps_report",
    "detect_heuristics",
    "evaluate_thresholds",
    "write_metrics_csv",
    "write_metrics_json",
]
