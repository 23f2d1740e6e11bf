"""Unit tests for temp-then-rename publishing."""

import os
from unittest.mock import patch

import pytest

from labops.core.atomic_write import atomic_write_bytes, atomic_write_text, ensure_output_dir
from labops.core.errors import ArtifactWriteError, AtomicWriteError


class TestAtomicWrite:
    """atomic_write_bytes / atomic_write_text."""

    def test_creates_parents_and_writes(self, tmp_path):
        target = tmp_path / "a" / "b" / "out.txt"
        result = atomic_write_text(target, "hello")
        assert result == target
        assert target.read_text(encoding="utf-8") == "hello"

    def test_replaces_existing_content(self, tmp_path):
        target = tmp_path / "out.bin"
        target.write_bytes(b"old")
        atomic_write_bytes(target, b"new")
        assert target.read_bytes() == b"new"

    def test_no_temp_files_left_behind(self, tmp_path):
        atomic_write_text(tmp_path / "x.json", "{}")
        assert [p.name for p in tmp_path.iterdir()] == ["x.json"]

    def test_empty_path_rejected(self):
        with pytest.raises(AtomicWriteError, match="output path cannot be empty"):
            atomic_write_bytes("", b"data")

    def test_failed_rename_keeps_destination_and_cleans_temp(self, tmp_path):
        target = tmp_path / "keep.txt"
        target.write_text("original", encoding="utf-8")
        with patch("labops.core.atomic_write.os.replace", side_effect=PermissionError("denied")):
            with pytest.raises(AtomicWriteError, match="failed to publish output file"):
                atomic_write_text(target, "replacement")
        assert target.read_text(encoding="utf-8") == "original"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["keep.txt"]

    def test_retry_after_refused_replace_publishes_and_drops_backup(self, tmp_path):
        target = tmp_path / "retry.txt"
        target.write_text("original", encoding="utf-8")
        real_replace = os.replace
        attempts = []

        def refuse_first(src, dst):
            attempts.append(dst)
            if len(attempts) == 1:
                raise PermissionError("rename over existing refused")
            return real_replace(src, dst)

        with patch("labops.core.atomic_write.os.replace", side_effect=refuse_first):
            atomic_write_text(target, "replacement")

        assert len(attempts) == 2
        assert target.read_text(encoding="utf-8") == "replacement"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["retry.txt"]

    def test_failed_publish_without_existing_destination(self, tmp_path):
        target = tmp_path / "fresh.txt"
        with patch("labops.core.atomic_write.os.replace", side_effect=OSError("disk gone")):
            with pytest.raises(AtomicWriteError, match="disk gone"):
                atomic_write_text(target, "data")
        assert list(tmp_path.iterdir()) == []


class TestEnsureOutputDir:

    def test_creates_directory(self, tmp_path):
        out = ensure_output_dir(tmp_path / "nested" / "dir")
        assert out.is_dir()

    def test_empty_rejected(self):
        with pytest.raises(ArtifactWriteError):
            ensure_output_dir("")

    @pytest.mark.skipif(os.name == "nt", reason="POSIX file semantics")
    def test_file_in_the_way(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")
        with pytest.raises(ArtifactWriteError, match="failed to create output directory"):
            ensure_output_dir(blocker / "child")
