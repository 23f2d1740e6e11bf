"""Unit tests for run.json, scenario.json, summary.md and kb_draft.md writers."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from labops.artifacts import (
    RealDeviceMetadata,
    RunConfig,
    RunInfo,
    RunTimestamps,
    WebcamDeviceMetadata,
    write_kb_draft,
    write_run_json,
    write_run_summary_markdown,
    write_scenario_json,
)
from labops.artifacts.kb_draft import extract_context_value, extract_markdown_section
from labops.core.errors import ArtifactWriteError
from labops.metrics import compute_fps_report
from tests.infrastructure.mocks.backend_mocks import make_frames

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def run_info():
    return RunInfo(
        run_id="run-1768478400000-abc123",
        config=RunConfig(scenario_id="sim_baseline", backend="sim", seed=7, duration_ms=1000),
        timestamps=RunTimestamps(
            created_at=START,
            started_at=START + timedelta(milliseconds=5),
            finished_at=START + timedelta(seconds=1, milliseconds=5),
        ),
    )


class TestRunJson:

    def test_identity_and_timestamps(self, run_info, tmp_path):
        path = write_run_json(run_info, tmp_path)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert path.name == "run.json"
        assert data["run_id"] == "run-1768478400000-abc123"
        assert data["config"] == {"scenario_id": "sim_baseline", "backend": "sim", "seed": 7, "duration_ms": 1000}
        assert data["timestamps"]["created_at_utc"] == "2026-01-15T12:00:00.000Z"
        assert data["timestamps"]["started_at_utc"] == "2026-01-15T12:00:00.005Z"
        assert "real_device" not in data

    def test_real_device_omits_unset_fields(self, run_info, tmp_path):
        run_info.real_device = RealDeviceMetadata(model="SprintCam", serial="SN-1", transport="gige")
        data = json.loads(write_run_json(run_info, tmp_path).read_text(encoding="utf-8"))
        assert data["real_device"] == {"model": "SprintCam", "serial": "SN-1", "transport": "gige"}

    def test_webcam_device_section(self, run_info, tmp_path):
        run_info.webcam_device = WebcamDeviceMetadata(
            device_id="webcam-0", friendly_name="USB Cam", selector_text="index:0", discovered_index=0
        )
        data = json.loads(write_run_json(run_info, tmp_path).read_text(encoding="utf-8"))
        assert data["webcam_device"]["selector_text"] == "index:0"
        assert data["webcam_device"]["discovered_index"] == 0
        assert "bus_info" not in data["webcam_device"]


class TestScenarioCopy:

    def test_copies_bytes_verbatim(self, tmp_path):
        source = tmp_path / "source.json"
        source.write_bytes(b'{ "scenario_id" : "x" }\r\n')
        out = write_scenario_json(source, tmp_path / "bundle")
        assert out.name == "scenario.json"
        assert out.read_bytes() == b'{ "scenario_id" : "x" }\r\n'

    def test_missing_source(self, tmp_path):
        with pytest.raises(ArtifactWriteError, match="source scenario file not found"):
            write_scenario_json(tmp_path / "nope.json", tmp_path / "bundle")


class TestSummaryAndKbDraft:

    def _write_summary(self, run_info, tmp_path, failures=()):
        report = compute_fps_report(make_frames(10, fps=10, drop_ids=[3]), 1000)
        anomalies = ["Dropped 1 of 10 frames (10.00%)."]
        return write_run_summary_markdown(run_info, report, 10, list(failures), anomalies, tmp_path)

    def test_summary_sections(self, run_info, tmp_path):
        text = self._write_summary(run_info, tmp_path).read_text(encoding="utf-8")
        assert text.startswith("# Run Summary\n")
        assert "**PASS**" in text
        assert "| avg_fps | 9.000 |" in text
        assert "- All configured thresholds passed." in text
        assert "1. Dropped 1 of 10 frames (10.00%)." in text

    def test_summary_failures(self, run_info, tmp_path):
        text = self._write_summary(run_info, tmp_path, ["avg_fps actual=9 is below minimum=10"]).read_text(
            encoding="utf-8"
        )
        assert "**FAIL**" in text
        assert "- Threshold violations: 1" in text

    def test_kb_draft_from_summary(self, run_info, tmp_path):
        self._write_summary(run_info, tmp_path)
        path = write_kb_draft(tmp_path)
        text = path.read_text(encoding="utf-8")
        assert path == tmp_path / "kb_draft.md"
        assert f"# KB Draft: {tmp_path.name}" in text
        assert "- run_status: `PASS`" in text
        assert "- scenario_id: `sim_baseline`" in text
        assert "Dropped 1 of 10 frames (10.00%)." in text
        assert f"- summary: `{tmp_path / 'summary.md'}`" in text

    def test_kb_draft_output_directory(self, run_info, tmp_path):
        self._write_summary(run_info, tmp_path)
        out_dir = tmp_path / "drafts"
        out_dir.mkdir()
        assert write_kb_draft(tmp_path, out_dir) == out_dir / "kb_draft.md"

    def test_kb_draft_requires_summary(self, tmp_path):
        with pytest.raises(ArtifactWriteError, match="summary.md not found"):
            write_kb_draft(tmp_path)

    def test_kb_draft_requires_directory(self, tmp_path):
        with pytest.raises(ArtifactWriteError, match="does not exist or is not a directory"):
            write_kb_draft(tmp_path / "missing")


class TestMarkdownExtraction:

    def test_section_and_value(self):
        markdown = "# T\n\n## Run Identity\n\n- backend: `sim`\n- seed: 3\n\n## Other\n\nx\n"
        section = extract_markdown_section(markdown, "Run Identity")
        assert section == "- backend: `sim`\n- seed: 3"
        assert extract_context_value(section, "backend") == "sim"
        assert extract_context_value(section, "seed") == "3"
        assert extract_markdown_section(markdown, "Missing") == ""
