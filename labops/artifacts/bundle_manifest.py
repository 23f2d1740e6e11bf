"""bundle_manifest.json: size and SHA-256 of every bundle artifact."""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Dict, List, Sequence, Union

from labops.core.atomic_write import atomic_write_text, ensure_output_dir
from labops.core.errors import ArtifactWriteError

MANIFEST_FILENAME = "bundle_manifest.json"
MANIFEST_SCHEMA_VERSION = "1.0"
_HASH_CHUNK_SIZE = 64 * 1024


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(_HASH_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as e:
        raise ArtifactWriteError(f"failed while reading file for hashing: {path}: {e}") from e
    return digest.hexdigest()


def _relative_to_bundle(bundle_dir: Path, artifact_path: Path) -> str:
    relative = os.path.relpath(artifact_path, bundle_dir)
    if relative.startswith(".."):
        raise ArtifactWriteError(f"artifact is outside bundle directory: {artifact_path}")
    return Path(relative).as_posix()


def write_bundle_manifest_json(bundle_dir: Union[str, Path], artifact_paths: Sequence[Path]) -> Path:
    """Hash ``artifact_paths`` in the given order and publish the manifest.

    Raises:
        ArtifactWriteError: for an empty list, a missing artifact, or one
            that lives outside ``bundle_dir``.
    """
    if not artifact_paths:
        raise ArtifactWriteError("artifact path list cannot be empty")
    root = ensure_output_dir(bundle_dir)

    entries: List[Dict[str, object]] = []
    for artifact_path in artifact_paths:
        path = Path(artifact_path)
        if not path.exists():
            raise ArtifactWriteError(f"artifact file not found: {path}")
        if not path.is_file():
            raise ArtifactWriteError(f"artifact path must be a regular file: {path}")
        relative = _relative_to_bundle(root, path)
        entries.append({"path": relative, "size": path.stat().st_size, "sha256": sha256_file(path)})

    manifest = {"schema_version": MANIFEST_SCHEMA_VERSION, "files": entries}
    text = json.dumps(manifest, indent=2, ensure_ascii=False, separators=(",", ":")) + "\n"
    return atomic_write_text(root / MANIFEST_FILENAME, text)


__all__ = [
    "MANIFEST_FILENAME",
    "MANIFEST_SCHEMA_VERSION",
    "sha256_file",
    "write_bundle_manifest_json",
]
