from __future__ import annotations

import os
from pathlib import Path


# Root directory for every path exposed over HTTP.
# Default: project-local ./storage for easier inspection and cleanup.
# Override with env var FILERELAY_STORAGE_ROOT.
_root_raw = os.environ.get("FILERELAY_STORAGE_ROOT")
if _root_raw and _root_raw.strip():
    STORAGE_ROOT = Path(_root_raw)
else:
    # filerelay_backend/ -> project root
    STORAGE_ROOT = Path(__file__).resolve().parent.parent / "storage"
STORAGE_ROOT = STORAGE_ROOT.resolve()
STORAGE_ROOT.mkdir(parents=True, exist_ok=True)

# Request bodies are read fully into memory before being written out.
MAX_BODY_BYTES = int(os.environ.get("FILERELAY_MAX_BODY_BYTES", str(10 * 1024 * 1024)))  # 10MB
MAX_FORM_BYTES = int(os.environ.get("FILERELAY_MAX_FORM_BYTES", str(32 * 1024 * 1024)))  # 32MB

# Buffer size for streamed file/archive copies.
COPY_CHUNK_BYTES = int(os.environ.get("FILERELAY_COPY_CHUNK_BYTES", str(64 * 1024)))

# Base URL the /proxy/ route forwards to. Empty disables the route.
UPSTREAM_URL = (os.environ.get("FILERELAY_UPSTREAM_URL") or "").strip().rstrip("/")
PROXY_TIMEOUT_SECONDS = float(os.environ.get("FILERELAY_PROXY_TIMEOUT_SECONDS", "30"))

# Content sniffing only ever looks at this many leading bytes.
SNIFF_BYTES = 512

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644
DEFAULT_HASH_ALGORITHM = "sha256"
