"""Knowledge-base article skeleton seeded from a finished run bundle."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union

from labops.artifacts.summary_writer import SUMMARY_FILENAME
from labops.core.atomic_write import atomic_write_text
from labops.core.errors import ArtifactWriteError

KB_DRAFT_FILENAME = "kb_draft.md"

_EVIDENCE_FILES = (
    ("summary", "summary.md"),
    ("run_json", "run.json"),
    ("events_jsonl", "events.jsonl"),
    ("metrics_json", "metrics.json"),
    ("metrics_csv", "metrics.csv"),
    ("config_report", "config_report.md"),
    ("hostprobe", "hostprobe.json"),
    ("bundle_manifest", "bundle_manifest.json"),
)


def extract_markdown_section(markdown: str, heading: str) -> str:
    """Body of the ``## <heading>`` section, trimmed; empty when absent."""
    marker = f"## {heading}"
    marker_pos = markdown.find(marker)
    if marker_pos < 0:
        return ""
    start = markdown.find("\n", marker_pos)
    if start < 0:
        return ""
    end = markdown.find("\n## ", start + 1)
    body = markdown[start + 1:] if end < 0 else markdown[start + 1:end]
    return body.strip()


def extract_context_value(section: str, key: str) -> str:
    prefix = f"- {key}:"
    for line in section.splitlines():
        if not line.startswith(prefix):
            continue
        first = line.find("`")
        if first >= 0:
            second = line.find("`", first + 1)
            if second > first + 1:
                return line[first + 1:second]
        return line[len(prefix):].strip()
    return ""


def _first_numbered_item(section: str) -> str:
    for line in section.splitlines():
        if line.startswith("1. "):
            return line[3:].strip()
    return ""


def render_kb_draft(run_dir: Path, summary_text: str) -> str:
    identity = extract_markdown_section(summary_text, "Run Identity")
    status = extract_markdown_section(summary_text, "Status").strip("* \n")
    anomalies = extract_markdown_section(summary_text, "Top Anomalies")
    thresholds = extract_markdown_section(summary_text, "Threshold Checks")
    device = extract_markdown_section(summary_text, "Device Selection")
    lead = _first_numbered_item(anomalies)

    lines: List[str] = [
        f"# KB Draft: {run_dir.name}",
        "",
        "## Status",
        "",
        "- draft_state: `needs_review`",
        f"- run_status: `{status}`",
        f"- scenario_id: `{extract_context_value(identity, 'scenario_id')}`",
        f"- backend: `{extract_context_value(identity, 'backend')}`",
        "",
        "## Problem Summary",
        "",
        lead if lead else "_Summarize the customer/user-visible issue in one paragraph._",
        "",
        "## Scope and Impact",
        "",
        "- _Describe affected camera models, firmware versions, and environments._",
        "- _Describe impact severity and frequency._",
        "",
    ]
    if device:
        lines += ["## Device", "", device, ""]

    lines += [
        "## Observed Anomalies (Source: Run Summary)",
        "",
        anomalies if anomalies else "_No anomaly section was found. Fill in manually._",
        "",
        "## Threshold Checks",
        "",
        thresholds if thresholds else "_No threshold section was found._",
        "",
        "## Resolution or Mitigation",
        "",
        "- _Describe exact fix, workaround, or rollback guidance._",
        "- _List config changes users should apply._",
        "",
        "## Evidence Links",
        "",
        f"- run_folder: `{run_dir}`",
    ]
    for label, name in _EVIDENCE_FILES:
        path = run_dir / name
        if path.exists():
            lines.append(f"- {label}: `{path}`")
    lines += [
        "",
        "## Publication Checklist",
        "",
        "- [ ] Remove confidential host/user identifiers",
        "- [ ] Confirm repro steps are deterministic",
        "- [ ] Add owner + review date",
        "- [ ] Link related issue/ticket",
    ]
    return "\n".join(lines) + "\n"


def write_kb_draft(run_dir: Union[str, Path], output_path: Optional[Union[str, Path]] = None) -> Path:
    """Write a KB draft for ``run_dir``.

    ``output_path`` defaults to ``<run_dir>/kb_draft.md``; an existing
    directory gets ``kb_draft.md`` inside it.
    """
    if not str(run_dir):
        raise ArtifactWriteError("run folder path cannot be empty")
    run_path = Path(run_dir)
    if not run_path.is_dir():
        raise ArtifactWriteError(f"run folder does not exist or is not a directory: {run_path}")

    summary_path = run_path / SUMMARY_FILENAME
    if not summary_path.is_file():
        raise ArtifactWriteError(f"{SUMMARY_FILENAME} not found under run folder: {run_path}")
    try:
        summary_text = summary_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ArtifactWriteError(f"failed to open file '{summary_path}': {e}") from e

    destination = Path(output_path) if output_path else run_path / KB_DRAFT_FILENAME
    if destination.is_dir():
        destination = destination / KB_DRAFT_FILENAME
    return atomic_write_text(destination, render_kb_draft(run_path, summary_text))


__all__ = [
    "KB_DRAFT_FILENAME",
    "extract_context_value",
    "extract_markdown_section",
    "render_kb_draft",
    "write_kb_draft",
]
