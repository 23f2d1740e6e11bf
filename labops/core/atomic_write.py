"""Temp-then-rename publishing for bundle artifacts.

Readers of a bundle never observe a half-written file: content lands in a
sibling temp file, is synced, and only then renamed over the destination.
"""

from __future__ import annotations

import itertools
import os
import sys
import time
from pathlib import Path
from typing import Optional, Union

from labops.core.errors import ArtifactWriteError, AtomicWriteError
from labops.core.logging_utils import get_module_logger

logger = get_module_logger("AtomicWrite")

_temp_counter = itertools.count()


def safe_fsync(fd: int) -> bool:
    """Sync file descriptor to disk.

    Returns:
        True if sync succeeded, False if it failed. fsync is advisory on
        some filesystems so failures are logged at debug level only.
    """
    try:
        if sys.platform == "win32":
            import msvcrt

            msvcrt._commit(fd)  # type: ignore[attr-defined]
        else:
            os.fsync(fd)
        return True
    except OSError as e:
        logger.debug("fsync failed", fd=fd, error=e)
        return False


def _temp_path_for(path: Path) -> Path:
    return path.with_name(f"{path.name}.tmp.{time.monotonic_ns()}.{next(_temp_counter)}")


def _backup_path_for(path: Path) -> Path:
    return path.with_name(f"{path.name}.bak.{time.monotonic_ns()}.{next(_temp_counter)}")


def _remove_quietly(path: Optional[Path]) -> None:
    if path is None:
        return
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug("temp cleanup failed", path=path, error=e)


def _publish(tmp_path: Path, destination: Path) -> None:
    """Rename ``tmp_path`` over ``destination``.

    Some platforms refuse rename-over-existing. The current destination is
    then moved aside and restored if the second rename also fails.
    """
    try:
        os.replace(tmp_path, destination)
        return
    except OSError:
        if not destination.exists():
            raise

    backup = _backup_path_for(destination)
    os.rename(destination, backup)
    try:
        os.replace(tmp_path, destination)
    except OSError:
        try:
            os.rename(backup, destination)
        except OSError as restore_error:
            logger.error("failed to restore destination after publish failure",
                         path=destination, backup=backup, error=restore_error)
        raise
    _remove_quietly(backup)


def atomic_write_bytes(path: Union[str, Path], data: bytes) -> Path:
    """Publish ``data`` at ``path`` atomically and return the destination.

    Raises:
        AtomicWriteError: when any step fails. The destination keeps its
            previous content and the temp file is removed.
    """
    destination = Path(path)
    if not str(path):
        raise AtomicWriteError("output path cannot be empty")

    tmp_path: Optional[Path] = None
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = _temp_path_for(destination)
        with open(tmp_path, "wb") as handle:
            handle.write(data)
            handle.flush()
            safe_fsync(handle.fileno())
        _publish(tmp_path, destination)
        tmp_path = None
    except OSError as e:
        _remove_quietly(tmp_path)
        raise AtomicWriteError(f"failed to publish output file '{destination}': {e}") from e
    return destination


def atomic_write_text(path: Union[str, Path], text: str) -> Path:
    return atomic_write_bytes(path, text.encode("utf-8"))


def ensure_output_dir(output_dir: Union[str, Path]) -> Path:
    """Create ``output_dir`` (and parents) and return it as a Path."""
    if not str(output_dir):
        raise ArtifactWriteError("output directory cannot be empty")
    out_dir = Path(output_dir)
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ArtifactWriteError(f"failed to create output directory '{out_dir}': {e}") from e
    return out_dir


__all__ = ["atomic_write_bytes", "atomic_write_text", "ensure_output_dir", "safe_fsync"]
