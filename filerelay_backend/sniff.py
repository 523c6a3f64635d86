"""Best-guess MIME type detection from the leading bytes of a file."""

from __future__ import annotations

import magic

from .config import SNIFF_BYTES

OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain"


def detect_content_type(data: bytes) -> str:
    """Return a MIME type for ``data``; only the first SNIFF_BYTES are considered.

    Empty input is reported as plain text.
    """
    head = bytes(data[:SNIFF_BYTES])
    if not head:
        return TEXT_PLAIN
    return magic.from_buffer(head, mime=True) or OCTET_STREAM
