"""Pack directories into ZIP archives and extract them again.

Extraction refuses any entry that would land outside the destination
directory (Zip Slip) and aborts the whole run when it sees one. Neither
packing nor extraction rolls back partial output on failure: callers that
need atomicity should work in a temporary location and rename on success.
"""

from __future__ import annotations

import logging
import os
import shutil
import zipfile
import zlib
from pathlib import PurePath, PurePosixPath
from typing import Iterator

from .config import COPY_CHUNK_BYTES, DEFAULT_DIR_MODE, DEFAULT_FILE_MODE
from .errors import (
    AlreadyExistsError,
    MalformedInputError,
    NotFoundError,
    PathTraversalError,
    StorageIOError,
)
from .paths import is_dir_file
from .security import clean_abspath, is_within

logger = logging.getLogger(__name__)

# Bit 0 of the general purpose flags marks an encrypted entry.
_FLAG_ENCRYPTED = 0x1

# Errors zipfile surfaces for damaged member data.
_CORRUPT_ENTRY_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError)


def _archive_name(root: str, path: str) -> str:
    """Entry name for ``path``: relative to ``root``, POSIX separators."""
    rel = os.path.relpath(path, root)
    name = PurePath(rel).as_posix()
    parts = PurePosixPath(name).parts
    if not parts or name == "." or name.startswith("/") or ".." in parts:
        raise MalformedInputError("Cannot compute archive entry name", path=path)
    return name


def _iter_regular_files(dir_path: str) -> Iterator[str]:
    """Depth-first walk in lexical order, yielding regular files only.

    Subdirectories are descended where their name sorts among their siblings.
    Symlinks and special files are skipped.
    """
    try:
        with os.scandir(dir_path) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as exc:
        raise StorageIOError(f"Cannot list directory: {exc.strerror or exc}", path=dir_path) from exc

    for entry in entries:
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
            is_file = entry.is_file(follow_symlinks=False)
        except OSError as exc:
            raise StorageIOError(f"Cannot inspect path: {exc.strerror or exc}", path=entry.path) from exc
        if is_dir:
            yield from _iter_regular_files(entry.path)
        elif is_file:
            yield entry.path
        else:
            logger.debug("Skipping non-regular file %s", entry.path)


def _write_entry(zf: zipfile.ZipFile, src_path: str, arcname: str) -> None:
    try:
        info = zipfile.ZipInfo.from_file(src_path, arcname, strict_timestamps=False)
        info.compress_type = zipfile.ZIP_DEFLATED
        with open(src_path, "rb") as src, zf.open(info, mode="w") as dest:
            shutil.copyfileobj(src, dest, COPY_CHUNK_BYTES)
    except FileNotFoundError as exc:
        raise NotFoundError("Source file disappeared while packing", path=src_path) from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot add file to archive: {exc.strerror or exc}", path=src_path) from exc
    logger.debug("Packed %s as %s", src_path, arcname)


def _require_source(path: str) -> tuple[bool, bool]:
    is_dir, is_file = is_dir_file(path)
    if not is_dir and not is_file:
        raise NotFoundError("Source path does not exist", path=path)
    return is_dir, is_file


def zip_dir(dir_path: str | os.PathLike[str], zip_file_path: str | os.PathLike[str]) -> int:
    """Compress every regular file below ``dir_path`` into ``zip_file_path``.

    Entry names are relative to ``dir_path``. Directories get no entries of
    their own, so empty directories are not represented in the archive.
    Returns the number of entries written. On error the archive at
    ``zip_file_path`` may exist but be incomplete and should be discarded.
    """
    root = os.fspath(dir_path)
    archive_path = os.fspath(zip_file_path)
    is_dir, _ = _require_source(root)
    if not is_dir:
        raise MalformedInputError("Source is not a directory", path=root)

    # The archive may be created inside the tree being packed.
    archive_clean = clean_abspath(archive_path)
    count = 0
    try:
        with zipfile.ZipFile(archive_path, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path in _iter_regular_files(root):
                if clean_abspath(path) == archive_clean:
                    continue
                _write_entry(zf, path, _archive_name(root, path))
                count += 1
    except OSError as exc:
        raise StorageIOError(f"Cannot write archive: {exc.strerror or exc}", path=archive_path) from exc

    logger.info("Packed %d file(s) from %s into %s", count, root, archive_path)
    return count


def zip_file(file_path: str | os.PathLike[str], zip_file_path: str | os.PathLike[str]) -> int:
    """Compress a single file into ``zip_file_path`` under its base name."""
    src = os.fspath(file_path)
    archive_path = os.fspath(zip_file_path)
    _, is_file = _require_source(src)
    if not is_file:
        raise MalformedInputError("Source is not a file", path=src)
    if clean_abspath(archive_path) == clean_abspath(src) or (
        os.path.exists(archive_path) and os.path.samefile(archive_path, src)
    ):
        raise MalformedInputError("Archive path is the source file", path=archive_path)

    try:
        with zipfile.ZipFile(archive_path, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            _write_entry(zf, src, os.path.basename(clean_abspath(src)))
    except OSError as exc:
        raise StorageIOError(f"Cannot write archive: {exc.strerror or exc}", path=archive_path) from exc

    logger.info("Packed %s into %s", src, archive_path)
    return 1


def _open_archive(archive_path: str) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(archive_path, mode="r")
    except FileNotFoundError as exc:
        raise NotFoundError("Archive not found", path=archive_path) from exc
    except zipfile.BadZipFile as exc:
        raise MalformedInputError("Invalid ZIP", path=archive_path) from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot open archive: {exc.strerror or exc}", path=archive_path) from exc


def list_entries(zip_file_path: str | os.PathLike[str]) -> list[str]:
    """Return the stored entry names of an archive, in stored order."""
    with _open_archive(os.fspath(zip_file_path)) as zf:
        return [info.filename for info in zf.infolist()]


def _entry_mode(info: zipfile.ZipInfo, default: int) -> int:
    mode = (info.external_attr >> 16) & 0o777
    return mode or default


def _extract_entry(zf: zipfile.ZipFile, info: zipfile.ZipInfo, destination: str) -> None:
    target = os.path.join(destination, info.filename)
    if not is_within(destination, target):
        logger.warning("Rejected archive entry %r: resolves outside %s", info.filename, destination)
        raise PathTraversalError(f"Illegal file path in archive: {info.filename}", path=info.filename)
    target = clean_abspath(target)

    if info.flag_bits & _FLAG_ENCRYPTED:
        raise MalformedInputError("Encrypted entries are not supported", path=info.filename)

    if info.is_dir():
        # The directory may already exist as the parent of an earlier entry.
        try:
            os.makedirs(target, DEFAULT_DIR_MODE, exist_ok=True)
            os.chmod(target, _entry_mode(info, DEFAULT_DIR_MODE))
        except OSError as exc:
            raise StorageIOError(f"Cannot create directory: {exc.strerror or exc}", path=target) from exc
        return

    try:
        os.makedirs(os.path.dirname(target), DEFAULT_DIR_MODE, exist_ok=True)
        with zf.open(info) as src, open(target, "wb") as dest:
            shutil.copyfileobj(src, dest, COPY_CHUNK_BYTES)
        os.chmod(target, _entry_mode(info, DEFAULT_FILE_MODE))
    except _CORRUPT_ENTRY_ERRORS as exc:
        raise MalformedInputError(f"Corrupt archive entry: {exc}", path=info.filename) from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot extract entry: {exc.strerror or exc}", path=target) from exc
    logger.debug("Extracted %s", target)


def unzip(zip_file_path: str | os.PathLike[str], destination_path: str | os.PathLike[str]) -> int:
    """Extract ``zip_file_path`` into a new directory ``destination_path``.

    The destination must not exist yet; it is created here. Entries are
    processed in stored order and the first entry that would escape the
    destination aborts the run with PathTraversalError. Files extracted
    before a failure are left in place.

    Returns the number of entries extracted.
    """
    archive_path = os.fspath(zip_file_path)
    destination = os.fspath(destination_path)

    with _open_archive(archive_path) as zf:
        try:
            os.mkdir(destination, DEFAULT_DIR_MODE)
        except FileExistsError as exc:
            raise AlreadyExistsError("Destination already exists", path=destination) from exc
        except OSError as exc:
            raise StorageIOError(f"Cannot create destination: {exc.strerror or exc}", path=destination) from exc

        count = 0
        for info in zf.infolist():
            _extract_entry(zf, info, destination)
            count += 1

    logger.info("Extracted %d entr%s from %s into %s", count, "y" if count == 1 else "ies", archive_path, destination)
    return count
