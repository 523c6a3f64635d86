from __future__ import annotations

import hashlib
import logging
import mimetypes
import os
import shutil
from typing import Any, Union

from .config import COPY_CHUNK_BYTES, DEFAULT_DIR_MODE, DEFAULT_HASH_ALGORITHM, SNIFF_BYTES
from .errors import AlreadyExistsError, MalformedInputError, NotFoundError, StorageIOError
from .paths import is_dir_file
from .security import is_same_or_within
from .sniff import OCTET_STREAM, detect_content_type

logger = logging.getLogger(__name__)

# A hashlib-style object (update/hexdigest) or an algorithm name for hashlib.new.
Hasher = Union[str, Any]


def copy_file(in_path: str | os.PathLike[str], out_path: str | os.PathLike[str]) -> None:
    """Copy a file byte-for-byte, creating or truncating ``out_path``."""
    try:
        with open(in_path, "rb") as src, open(out_path, "wb") as dest:
            shutil.copyfileobj(src, dest, COPY_CHUNK_BYTES)
    except FileNotFoundError as exc:
        missing = in_path if not os.path.exists(in_path) else out_path
        raise NotFoundError("File not found", path=os.fspath(missing)) from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot copy file: {exc.strerror or exc}", path=os.fspath(in_path)) from exc


def copy_dir(from_path: str | os.PathLike[str], to_path: str | os.PathLike[str]) -> None:
    """Recursively copy a directory tree to a new directory ``to_path``.

    ``to_path`` must not exist yet and must not be ``from_path`` itself or
    anything below it.
    """
    src = os.fspath(from_path)
    dest = os.fspath(to_path)
    if is_same_or_within(src, dest):
        raise MalformedInputError("Cannot copy a folder into the folder itself", path=dest)

    is_dir, is_file = is_dir_file(src)
    if not is_dir and not is_file:
        raise NotFoundError("Source directory not found", path=src)
    if not is_dir:
        raise MalformedInputError("Source is not a directory", path=src)

    _copy_tree(src, dest)
    logger.info("Copied directory %s to %s", src, dest)


def _copy_tree(src: str, dest: str) -> None:
    try:
        os.mkdir(dest, DEFAULT_DIR_MODE)
    except FileExistsError as exc:
        raise AlreadyExistsError("Destination already exists", path=dest) from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot create directory: {exc.strerror or exc}", path=dest) from exc

    try:
        with os.scandir(src) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as exc:
        raise StorageIOError(f"Cannot list directory: {exc.strerror or exc}", path=src) from exc

    for entry in entries:
        target = os.path.join(dest, entry.name)
        if entry.is_dir(follow_symlinks=False):
            _copy_tree(entry.path, target)
        elif entry.is_file(follow_symlinks=False):
            copy_file(entry.path, target)
        else:
            logger.debug("Skipping non-regular file %s", entry.path)


def _new_hasher(hasher: Hasher) -> Any:
    if isinstance(hasher, str):
        try:
            return hashlib.new(hasher)
        except ValueError as exc:
            raise MalformedInputError(f"Unsupported hash algorithm: {hasher}") from exc
    return hasher


def file_hash(file_path: str | os.PathLike[str], hasher: Hasher = DEFAULT_HASH_ALGORITHM) -> str:
    """Compute a hexadecimal hash of the file at ``file_path``.

    ``hasher`` is either an algorithm name (``"md5"``, ``"sha256"``, ...) or a
    fresh hashlib-style object such as ``hashlib.sha1()``; the object is fed
    the file's bytes in chunks and its ``hexdigest()`` is returned.
    """
    h = _new_hasher(hasher)
    try:
        with open(file_path, "rb") as fh:
            for chunk in iter(lambda: fh.read(COPY_CHUNK_BYTES), b""):
                h.update(chunk)
    except FileNotFoundError as exc:
        raise NotFoundError("File not found", path=os.fspath(file_path)) from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot read file: {exc.strerror or exc}", path=os.fspath(file_path)) from exc
    return h.hexdigest()


def file_content_type(file_path: str | os.PathLike[str]) -> str:
    """Guess the Content-Type of a file from its first bytes.

    When the bytes say nothing more specific than octet-stream, the file name
    extension is consulted.
    """
    try:
        with open(file_path, "rb") as fh:
            head = fh.read(SNIFF_BYTES)
    except FileNotFoundError as exc:
        raise NotFoundError("File not found", path=os.fspath(file_path)) from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot read file: {exc.strerror or exc}", path=os.fspath(file_path)) from exc
    mime_type = detect_content_type(head)
    if mime_type == OCTET_STREAM:
        guessed, _ = mimetypes.guess_type(os.fspath(file_path))
        return guessed or OCTET_STREAM
    return mime_type
