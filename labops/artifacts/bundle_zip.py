"""Deterministic store-only ZIP32 archive of a bundle directory.

Entries are sorted by path, uncompressed, and carry zero MS-DOS
timestamps, so two runs over identical inputs produce identical bytes.
"""

from __future__ import annotations

import os
import struct
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Union

from labops.core.errors import BundleZipError
from labops.core.logging_utils import get_module_logger

logger = get_module_logger("BundleZip")

LOCAL_FILE_HEADER_SIGNATURE = 0x04034B50
CENTRAL_DIRECTORY_SIGNATURE = 0x02014B50
END_OF_CENTRAL_DIRECTORY_SIGNATURE = 0x06054B50
ZIP_VERSION = 20
COMPRESSION_STORE = 0

_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFFFFFF
_CHUNK_SIZE = 8192


@dataclass
class _ZipEntry:
    path: Path
    name: bytes
    crc32: int = 0
    size: int = 0
    offset: int = 0


def _collect_files(bundle_dir: Path) -> List[Path]:
    if not bundle_dir.exists():
        raise BundleZipError(f"bundle directory not found: {bundle_dir}")
    if not bundle_dir.is_dir():
        raise BundleZipError(f"bundle path must be a directory: {bundle_dir}")
    files = [p for p in bundle_dir.rglob("*") if p.is_file()]
    if not files:
        raise BundleZipError(f"bundle directory contains no files: {bundle_dir}")
    return files


def _crc_and_size(path: Path) -> tuple:
    crc = 0
    size = 0
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                crc = zlib.crc32(chunk, crc)
                size += len(chunk)
    except OSError as e:
        raise BundleZipError(f"failed while reading file for zip crc: {path}: {e}") from e
    if size > _U32_MAX:
        raise BundleZipError(f"file too large for zip32 support: {path}")
    return crc & _U32_MAX, size


def _build_entries(bundle_dir: Path) -> List[_ZipEntry]:
    bundle_name = bundle_dir.name
    if not bundle_name:
        raise BundleZipError("bundle directory must have a valid name")

    named = []
    for path in _collect_files(bundle_dir):
        relative = Path(os.path.relpath(path, bundle_dir)).as_posix()
        if relative.startswith(".."):
            raise BundleZipError(f"file is outside bundle directory: {path}")
        named.append((f"{bundle_name}/{relative}", path))
    named.sort(key=lambda item: item[0])

    if len(named) > _U16_MAX:
        raise BundleZipError("too many files for zip32 support")

    entries: List[_ZipEntry] = []
    for zip_name, path in named:
        encoded = zip_name.encode("utf-8")
        if len(encoded) > _U16_MAX:
            raise BundleZipError(f"zip entry path too long: {zip_name}")
        crc, size = _crc_and_size(path)
        entries.append(_ZipEntry(path=path, name=encoded, crc32=crc, size=size))
    return entries


def _check_offset(offset: int, what: str) -> int:
    if offset > _U32_MAX:
        raise BundleZipError(f"zip {what} offset overflow")
    return offset


def _write_archive(out: BinaryIO, entries: List[_ZipEntry]) -> None:
    for entry in entries:
        entry.offset = _check_offset(out.tell(), "local file header")
        out.write(
            struct.pack(
                "<IHHHHHIIIHH",
                LOCAL_FILE_HEADER_SIGNATURE,
                ZIP_VERSION,
                0,  # flags
                COMPRESSION_STORE,
                0,  # mod time
                0,  # mod date
                entry.crc32,
                entry.size,
                entry.size,
                len(entry.name),
                0,  # extra length
            )
        )
        out.write(entry.name)
        with open(entry.path, "rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                out.write(chunk)

    central_start = _check_offset(out.tell(), "central directory")
    for entry in entries:
        out.write(
            struct.pack(
                "<IHHHHHHIIIHHHHHII",
                CENTRAL_DIRECTORY_SIGNATURE,
                ZIP_VERSION,  # made by
                ZIP_VERSION,  # needed to extract
                0,
                COMPRESSION_STORE,
                0,
                0,
                entry.crc32,
                entry.size,
                entry.size,
                len(entry.name),
                0,  # extra length
                0,  # comment length
                0,  # disk number start
                0,  # internal attributes
                0,  # external attributes
                entry.offset,
            )
        )
        out.write(entry.name)

    central_end = _check_offset(out.tell(), "central directory end")
    out.write(
        struct.pack(
            "<IHHHHIIH",
            END_OF_CENTRAL_DIRECTORY_SIGNATURE,
            0,
            0,
            len(entries),
            len(entries),
            central_end - central_start,
            central_start,
            0,  # comment length
        )
    )


def write_bundle_zip(bundle_dir: Union[str, Path]) -> Path:
    """Write ``<bundle_dir>.zip`` next to ``bundle_dir`` and return its path.

    Raises:
        BundleZipError: when the bundle is unusable or the archive cannot be
            written. A partially written archive is removed.
    """
    if not str(bundle_dir):
        raise BundleZipError("bundle directory cannot be empty")
    root = Path(bundle_dir)
    entries = _build_entries(root)

    zip_path = root.with_name(root.name + ".zip")
    try:
        with open(zip_path, "wb") as out:
            _write_archive(out, entries)
    except (OSError, BundleZipError) as e:
        try:
            zip_path.unlink()
        except OSError as cleanup_error:
            logger.debug("partial zip cleanup failed", path=zip_path, error=cleanup_error)
        if isinstance(e, BundleZipError):
            raise
        raise BundleZipError(f"failed while writing bundle zip '{zip_path}': {e}") from e

    logger.debug("bundle zip written", path=zip_path, entries=len(entries))
    return zip_path


__all__ = [
    "CENTRAL_DIRECTORY_SIGNATURE",
    "END_OF_CENTRAL_DIRECTORY_SIGNATURE",
    "LOCAL_FILE_HEADER_SIGNATURE",
    "write_bundle_zip",
]
