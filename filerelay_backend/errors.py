"""
Exception types raised by the filerelay helpers.
"""

from __future__ import annotations

from typing import Optional


class FileRelayError(Exception):
    """Base exception class for filerelay errors.

    ``path`` names the offending file, directory or archive member when known.
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class NotFoundError(FileRelayError):
    """Raised when a path or archive entry does not exist."""
    pass


class AlreadyExistsError(FileRelayError):
    """Raised when a destination is occupied and exclusivity was required."""
    pass


class StorageIOError(FileRelayError):
    """Raised when reading, writing or opening on disk fails."""
    pass


class PathTraversalError(FileRelayError, ValueError):
    """Raised when a path would resolve outside its root directory."""
    pass


class MalformedInputError(FileRelayError, ValueError):
    """Raised for corrupt archives and invalid source arguments."""
    pass


class PayloadTooLargeError(FileRelayError):
    """Raised when an inbound body or form exceeds its size limit."""
    pass


class UpstreamError(FileRelayError):
    """Raised when forwarding a request to another server fails."""
    pass
