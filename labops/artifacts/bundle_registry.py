"""Ordered file registry that feeds bundle_manifest.json."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Union

PathLike = Union[str, Path]


class BundleArtifactRegistry:
    """Ordered record of the files that make up a run bundle.

    Required artifacts are always listed, even if missing on disk, so the
    manifest step surfaces the discrepancy. Optional artifacts are listed
    only when they exist.
    """

    def __init__(self) -> None:
        self._required: List[Path] = []
        self._optional: List[Optional[Path]] = []

    def register_required(self, artifact_path: PathLike) -> None:
        self._required.append(Path(artifact_path))

    def register_optional(self, artifact_path: Optional[PathLike]) -> None:
        self._optional.append(Path(artifact_path) if artifact_path else None)

    def register_many(self, artifact_paths: Iterable[PathLike]) -> None:
        for path in artifact_paths:
            self.register_required(path)

    @property
    def required(self) -> List[Path]:
        return list(self._required)

    def build_manifest_input(self) -> List[Path]:
        paths = list(self._required)
        for path in self._optional:
            if path is not None and path.exists():
                paths.append(path)
        return paths


__all__ = ["BundleArtifactRegistry"]
