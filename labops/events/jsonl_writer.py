from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Union

import aiofiles

from labops.core.errors import ArtifactWriteError
from labops.events.model import Event, serialize_event

EVENTS_FILENAME = "events.jsonl"


async def append_event_jsonl(event: Event, output_dir: Union[str, Path]) -> Path:
    """Append ``event`` as one line to ``<output_dir>/events.jsonl``.

    The file is opened in append mode for every call so a crash never loses
    earlier lines.
    """
    if not str(output_dir):
        raise ArtifactWriteError("output directory cannot be empty")
    out_dir = Path(output_dir)
    try:
        await asyncio.to_thread(out_dir.mkdir, parents=True, exist_ok=True)
    except OSError as e:
        raise ArtifactWriteError(f"failed to create output directory '{out_dir}': {e}") from e

    path = out_dir / EVENTS_FILENAME
    try:
        async with aiofiles.open(path, "a", encoding="utf-8", newline="\n") as f:
            await f.write(serialize_event(event) + "\n")
    except OSError as e:
        raise ArtifactWriteError(f"failed while writing event log '{path}': {e}") from e
    return path


__all__ = ["EVENTS_FILENAME", "append_event_jsonl"]
