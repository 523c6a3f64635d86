"""Classify and list filesystem paths."""

from __future__ import annotations

import os
import stat

from .errors import MalformedInputError, NotFoundError, StorageIOError


def is_dir_file(path: str | os.PathLike[str]) -> tuple[bool, bool]:
    """Check whether a directory or a file exists at ``path``.

    Returns ``(is_dir, is_file)``:

    - ``(False, False)``: nothing exists here
    - ``(True, False)``: a directory exists here
    - ``(False, True)``: a file exists here

    Any failure other than absence (permissions, I/O) raises StorageIOError
    instead of returning a result.
    """
    try:
        st = os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        # A missing component or a file used as a directory: nothing is there.
        return False, False
    except OSError as exc:
        raise StorageIOError(f"Cannot inspect path: {exc.strerror or exc}", path=os.fspath(path)) from exc
    is_dir = stat.S_ISDIR(st.st_mode)
    return is_dir, not is_dir


def children_of_dir(dir_path: str | os.PathLike[str]) -> list[str]:
    """Return the names of a directory's entries, sorted."""
    try:
        names = os.listdir(dir_path)
    except FileNotFoundError as exc:
        raise NotFoundError("Directory not found", path=os.fspath(dir_path)) from exc
    except NotADirectoryError as exc:
        raise MalformedInputError("Not a directory", path=os.fspath(dir_path)) from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot list directory: {exc.strerror or exc}", path=os.fspath(dir_path)) from exc
    return sorted(names)
