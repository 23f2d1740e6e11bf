"""Soak checkpoint persistence.

A soak run writes ``soak_checkpoint.json`` (latest state) and
``checkpoints/checkpoint_<n>.json`` (history) after every chunk, and appends
each chunk's frames to ``soak_frames.jsonl``. A resumed run reloads both so
final metrics cover the whole soak, not just the last session.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import aiofiles

from labops.artifacts.run_writer import RunTimestamps
from labops.backends.base import FrameOutcome, FrameSample
from labops.core.atomic_write import atomic_write_text
from labops.core.errors import ArtifactWriteError, CheckpointError, JsonParseError, LabOpsError
from labops.core.json_parser import parse_json
from labops.core.logging_utils import get_module_logger
from labops.core.time_utils import from_epoch_micros, from_epoch_millis, to_epoch_micros, to_epoch_millis

logger = get_module_logger("SoakCheckpoint")

CHECKPOINT_SCHEMA_VERSION = "1.0"
CHECKPOINT_FILENAME = "soak_checkpoint.json"
CHECKPOINT_HISTORY_DIR = "checkpoints"
FRAME_CACHE_FILENAME = "soak_frames.jsonl"

_REQUIRED_STRINGS = ("run_id", "scenario_path", "bundle_dir", "status")
_REQUIRED_UNSIGNED = (
    "total_duration_ms",
    "completed_duration_ms",
    "checkpoints_written",
    "frames_total",
    "frames_received",
    "frames_dropped",
    "created_at_epoch_ms",
    "started_at_epoch_ms",
    "finished_at_epoch_ms",
    "updated_at_epoch_ms",
)


class CheckpointStatus(Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class CheckpointState:
    run_id: str
    scenario_path: Path
    bundle_dir: Path
    timestamps: RunTimestamps
    updated_at: datetime
    frame_cache_path: Optional[Path] = None
    total_duration_ms: int = 0
    completed_duration_ms: int = 0
    checkpoints_written: int = 0
    frames_total: int = 0
    frames_received: int = 0
    frames_dropped: int = 0
    status: CheckpointStatus = CheckpointStatus.RUNNING
    stop_reason: str = ""

    @property
    def remaining_duration_ms(self) -> int:
        return max(0, self.total_duration_ms - self.completed_duration_ms)

    @property
    def resolved_frame_cache_path(self) -> Path:
        return self.frame_cache_path or Path(self.bundle_dir) / FRAME_CACHE_FILENAME


def checkpoint_paths(bundle_dir: Union[str, Path], checkpoint_index: int) -> Tuple[Path, Path]:
    """``(latest, history)`` paths for checkpoint number ``checkpoint_index``."""
    bundle = Path(bundle_dir)
    return (
        bundle / CHECKPOINT_FILENAME,
        bundle / CHECKPOINT_HISTORY_DIR / f"checkpoint_{checkpoint_index}.json",
    )


def resume_hint(state: CheckpointState) -> str:
    latest, _ = checkpoint_paths(state.bundle_dir, state.checkpoints_written)
    return f"labops run {state.scenario_path} --soak --resume {latest}"


def checkpoint_to_dict(state: CheckpointState) -> Dict[str, Any]:
    return {
        "schema_version": CHECKPOINT_SCHEMA_VERSION,
        "mode": "soak",
        "status": state.status.value,
        "stop_reason": state.stop_reason,
        "run_id": state.run_id,
        "scenario_path": str(state.scenario_path),
        "bundle_dir": str(state.bundle_dir),
        "frame_cache_path": str(state.resolved_frame_cache_path),
        "total_duration_ms": state.total_duration_ms,
        "completed_duration_ms": state.completed_duration_ms,
        "remaining_duration_ms": state.remaining_duration_ms,
        "checkpoints_written": state.checkpoints_written,
        "frames_total": state.frames_total,
        "frames_received": state.frames_received,
        "frames_dropped": state.frames_dropped,
        "created_at_epoch_ms": to_epoch_millis(state.timestamps.created_at),
        "started_at_epoch_ms": to_epoch_millis(state.timestamps.started_at),
        "finished_at_epoch_ms": to_epoch_millis(state.timestamps.finished_at),
        "updated_at_epoch_ms": to_epoch_millis(state.updated_at),
        "resume_hint": resume_hint(state),
    }


def write_checkpoint_json(state: CheckpointState, output_path: Union[str, Path]) -> Path:
    """Atomically publish ``state`` at ``output_path``.

    A failed write leaves any previous checkpoint at that path intact.
    """
    path = Path(output_path)
    text = json.dumps(checkpoint_to_dict(state), indent=2, ensure_ascii=False) + "\n"
    try:
        return atomic_write_text(path, text)
    except LabOpsError as e:
        raise ArtifactWriteError(f"failed while writing soak checkpoint output '{path}' ({e})") from e


def write_checkpoint_artifacts(state: CheckpointState) -> Tuple[Path, Path]:
    """Write the latest checkpoint and its numbered history copy."""
    latest, history = checkpoint_paths(state.bundle_dir, state.checkpoints_written)
    write_checkpoint_json(state, latest)
    write_checkpoint_json(state, history)
    logger.debug(
        "soak checkpoint written",
        checkpoint_index=state.checkpoints_written,
        status=state.status.value,
        completed_duration_ms=state.completed_duration_ms,
    )
    return latest, history


def _unsigned(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    if value < 0:
        return None
    return int(value)


def _required_string(data: Mapping[str, Any], key: str) -> str:
    if key not in data:
        raise CheckpointError(f"missing required field '{key}'")
    value = data[key]
    if not isinstance(value, str):
        raise CheckpointError(f"field '{key}' must be a string")
    return value


def _required_unsigned(data: Mapping[str, Any], key: str) -> int:
    if key not in data:
        raise CheckpointError(f"missing required field '{key}'")
    value = _unsigned(data[key])
    if value is None:
        raise CheckpointError(f"field '{key}' must be a non-negative integer")
    return value


def load_checkpoint(checkpoint_path: Union[str, Path]) -> CheckpointState:
    """Read a checkpoint written by :func:`write_checkpoint_json`.

    Raises:
        CheckpointError: unreadable file, invalid JSON, missing or mistyped
            fields, unknown status, or inconsistent durations.
    """
    path = Path(checkpoint_path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CheckpointError(f"failed to read checkpoint '{path}': {e}") from e
    try:
        root = parse_json(text)
    except JsonParseError as e:
        raise CheckpointError(f"invalid checkpoint JSON '{path}': {e}") from e
    if not isinstance(root, dict):
        raise CheckpointError("checkpoint root must be a JSON object")

    try:
        strings = {key: _required_string(root, key) for key in _REQUIRED_STRINGS}
        numbers = {key: _required_unsigned(root, key) for key in _REQUIRED_UNSIGNED}
    except CheckpointError as e:
        raise CheckpointError(f"checkpoint parse failed for '{path}': {e}") from e

    try:
        status = CheckpointStatus(strings["status"])
    except ValueError:
        raise CheckpointError(f"checkpoint has unsupported status value: {strings['status']}") from None
    if numbers["completed_duration_ms"] > numbers["total_duration_ms"]:
        raise CheckpointError("checkpoint completed_duration_ms exceeds total_duration_ms")
    if not strings["run_id"] or not strings["scenario_path"] or not strings["bundle_dir"]:
        raise CheckpointError("checkpoint contains empty required identity fields")

    frame_cache = root.get("frame_cache_path")
    stop_reason = root.get("stop_reason")
    return CheckpointState(
        run_id=strings["run_id"],
        scenario_path=Path(strings["scenario_path"]),
        bundle_dir=Path(strings["bundle_dir"]),
        frame_cache_path=Path(frame_cache) if isinstance(frame_cache, str) and frame_cache else None,
        timestamps=RunTimestamps(
            created_at=from_epoch_millis(numbers["created_at_epoch_ms"]),
            started_at=from_epoch_millis(numbers["started_at_epoch_ms"]),
            finished_at=from_epoch_millis(numbers["finished_at_epoch_ms"]),
        ),
        updated_at=from_epoch_millis(numbers["updated_at_epoch_ms"]),
        total_duration_ms=numbers["total_duration_ms"],
        completed_duration_ms=numbers["completed_duration_ms"],
        checkpoints_written=numbers["checkpoints_written"],
        frames_total=numbers["frames_total"],
        frames_received=numbers["frames_received"],
        frames_dropped=numbers["frames_dropped"],
        status=status,
        stop_reason=stop_reason if isinstance(stop_reason, str) else "",
    )


def frame_cache_line(frame: FrameSample) -> str:
    return json.dumps(
        {
            "frame_id": frame.frame_id,
            "ts_epoch_us": to_epoch_micros(frame.timestamp),
            "size_bytes": frame.size_bytes,
            "dropped": frame.is_dropped,
            "outcome": frame.outcome.value,
        },
        separators=(",", ":"),
    )


async def append_frame_cache(frames: Iterable[FrameSample], frame_cache_path: Union[str, Path]) -> Path:
    """Append one JSON line per frame to the soak frame cache."""
    if not str(frame_cache_path):
        raise ArtifactWriteError("frame cache path cannot be empty")
    path = Path(frame_cache_path)
    try:
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
    except OSError as e:
        raise ArtifactWriteError(f"failed to create frame cache directory '{path.parent}': {e}") from e

    lines = "".join(frame_cache_line(frame) + "\n" for frame in frames)
    try:
        async with aiofiles.open(path, "a", encoding="utf-8", newline="\n") as f:
            await f.write(lines)
    except OSError as e:
        raise ArtifactWriteError(f"failed while appending frame cache file '{path}': {e}") from e
    return path


def _frame_from_cache(data: Any) -> Optional[FrameSample]:
    if not isinstance(data, dict):
        return None
    frame_id = _unsigned(data.get("frame_id"))
    ts_us = _unsigned(data.get("ts_epoch_us"))
    size_bytes = _unsigned(data.get("size_bytes"))
    dropped = data.get("dropped")
    if frame_id is None or ts_us is None or size_bytes is None or not isinstance(dropped, bool):
        return None
    outcome_text = data.get("outcome")
    if outcome_text is None:
        outcome = FrameOutcome.DROPPED if dropped else FrameOutcome.RECEIVED
    else:
        try:
            outcome = FrameOutcome(outcome_text)
        except ValueError:
            return None
    return FrameSample(frame_id, from_epoch_micros(ts_us), size_bytes, dropped, outcome)


def load_frame_cache(frame_cache_path: Union[str, Path]) -> List[FrameSample]:
    """Load every cached frame; a missing cache file means no frames yet."""
    path = Path(frame_cache_path)
    if not path.exists():
        return []
    frames: List[FrameSample] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    frame = _frame_from_cache(parse_json(line))
                except JsonParseError:
                    frame = None
                if frame is None:
                    raise CheckpointError(f"invalid frame cache line in '{path}'")
                frames.append(frame)
    except OSError as e:
        raise CheckpointError(f"failed while reading frame cache file '{path}': {e}") from e
    return frames


__all__ = [
    "CHECKPOINT_FILENAME",
    "CHECKPOINT_HISTORY_DIR",
    "CHECKPOINT_SCHEMA_VERSION",
    "FRAME_CACHE_FILENAME",
    "CheckpointState",
    "CheckpointStatus",
    "append_frame_cache",
    "checkpoint_paths",
    "checkpoint_to_dict",
    "load_checkpoint",
    "load_frame_cache",
    "resume_hint",
    "write_checkpoint_artifacts",
    "write_checkpoint_json",
]
