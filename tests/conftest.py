"""Point the storage root at a throwaway directory before anything imports config."""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("FILERELAY_STORAGE_ROOT", tempfile.mkdtemp(prefix="filerelay-tests-"))
