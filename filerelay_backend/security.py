from __future__ import annotations

import os
from pathlib import Path

from .errors import PathTraversalError


def clean_abspath(path: str | os.PathLike[str]) -> str:
    """Absolute, normalized form of ``path`` without touching the filesystem."""
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def is_within(root: str | os.PathLike[str], candidate: str | os.PathLike[str]) -> bool:
    """Return True if ``candidate`` lies strictly below ``root``.

    Both sides are cleaned lexically; the root itself does not count as inside.
    """
    root_clean = clean_abspath(root)
    prefix = root_clean if root_clean.endswith(os.sep) else root_clean + os.sep
    return clean_abspath(candidate).startswith(prefix)


def is_same_or_within(root: str | os.PathLike[str], candidate: str | os.PathLike[str]) -> bool:
    return clean_abspath(root) == clean_abspath(candidate) or is_within(root, candidate)


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when serving or writing user-controlled paths.
    Symlinks are resolved before the check.
    """
    base_dir = Path(base_dir).resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise PathTraversalError("Path traversal attempt", path=str(candidate))
    return resolved
