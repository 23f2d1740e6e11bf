"""Shared pytest configuration and fixtures for the labops test suite."""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

LABOPS_ENV_VARS = (
    "LABOPS_PARAM_KEY_MAP",
    "LABOPS_REAL_BACKEND",
    "LABOPS_REAL_DEVICE_FIXTURE",
    "LABOPS_REAL_DISCONNECT_AFTER_PULLS",
    "LABOPS_WEBCAM_DEVICE_FIXTURE",
    "LABOPS_WEBCAM_MAX_PROBE_INDEX",
)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring a physical camera"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that require a physical camera",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --run-hardware is specified."""
    if config.getoption("--run-hardware"):
        return

    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def clean_labops_env(monkeypatch):
    """Start every test without any LABOPS_* switches from the host shell."""
    for name in LABOPS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def base_scenario() -> dict:
    """Minimal scenario that passes strict validation on the sim backend."""
    return {
        "schema_version": "1.0",
        "scenario_id": "sim_baseline",
        "duration": {"duration_ms": 2000},
        "camera": {"fps": 30, "frame_size_bytes": 1024},
        "thresholds": {"min_avg_fps": 25, "max_drop_rate_percent": 5},
    }


@pytest.fixture
def write_scenario(tmp_path):
    """Factory writing a scenario dict (or raw text) to ``tmp_path``."""

    def _write(content, name: str = "scenario.json") -> Path:
        path = tmp_path / name
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_text(json.dumps(content, indent=2), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def fixed_wall_time() -> datetime:
    return datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_clock(fixed_wall_time):
    """CaptureClock anchored at a known wall time and steady origin 0."""
    from labops.core.time_utils import CaptureClock
    return CaptureClock.anchored(fixed_wall_time, 0)


# =============================================================================
# Mock Fixtures
# =============================================================================

@pytest.fixture
def recording_backend():
    """Scriptable in-memory camera backend."""
    from tests.infrastructure.mocks.backend_mocks import RecordingBackend
    return RecordingBackend()
