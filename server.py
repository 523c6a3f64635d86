from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from filerelay_backend.config import (
    DEFAULT_HASH_ALGORITHM,
    MAX_BODY_BYTES,
    MAX_FORM_BYTES,
    STORAGE_ROOT,
    UPSTREAM_URL,
)
from filerelay_backend.errors import (
    AlreadyExistsError,
    FileRelayError,
    MalformedInputError,
    NotFoundError,
    PathTraversalError,
    PayloadTooLargeError,
    UpstreamError,
)
from filerelay_backend.files import copy_dir, copy_file, file_content_type, file_hash
from filerelay_backend.logging_utils import configure_logging
from filerelay_backend.paths import children_of_dir, is_dir_file
from filerelay_backend.proxy import (
    close_http_client,
    forward_request_to_url,
    forward_response_to_client,
    save_form_post_as_files,
    save_request_body_as_file,
)
from filerelay_backend.security import safe_join
from filerelay_backend.zip_utils import list_entries, unzip, zip_dir, zip_file


logger = logging.getLogger("filerelay.server")


class ArchiveRequest(BaseModel):
    source: str
    archive: str


class ExtractRequest(BaseModel):
    archive: str
    destination: str


class CopyRequest(BaseModel):
    source: str
    destination: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Serving files from %s", STORAGE_ROOT)
    try:
        yield
    finally:
        await close_http_client()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(exc: FileRelayError) -> HTTPException:
    # Never expose absolute filesystem paths in responses.
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail="Not found")
    if isinstance(exc, AlreadyExistsError):
        return HTTPException(status_code=409, detail="Already exists")
    if isinstance(exc, PathTraversalError):
        return HTTPException(status_code=400, detail="Path traversal attempt")
    if isinstance(exc, MalformedInputError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, PayloadTooLargeError):
        return HTTPException(status_code=413, detail="Payload too large")
    if isinstance(exc, UpstreamError):
        return HTTPException(status_code=502, detail="Error in proxy server")
    logger.error("Storage failure: %s (%s)", exc, exc.path)
    return HTTPException(status_code=500, detail="Storage error")


def _storage_path(relative: str) -> Path:
    """Resolve a client-supplied path under STORAGE_ROOT."""
    try:
        return safe_join(STORAGE_ROOT, relative.lstrip("/"))
    except PathTraversalError as exc:
        raise _http_error(exc)


def _relative(path: Path) -> str:
    return path.relative_to(STORAGE_ROOT.resolve()).as_posix()


@app.put("/api/files/{file_path:path}")
async def upload_file(file_path: str, request: Request, overwrite: bool = False) -> JSONResponse:
    """Store the raw request body at the given path."""
    path = _storage_path(file_path)
    if path == STORAGE_ROOT.resolve():
        raise HTTPException(status_code=400, detail="A file name is required")
    try:
        written = await save_request_body_as_file(
            request, path, overwrite=overwrite, max_bytes=MAX_BODY_BYTES, make_parents=True
        )
    except FileRelayError as exc:
        raise _http_error(exc)
    except OSError:
        raise HTTPException(status_code=500, detail="Storage error")
    return JSONResponse({"path": _relative(path), "bytes": written}, status_code=201)


@app.post("/api/forms/{dir_path:path}")
async def upload_form(dir_path: str, request: Request) -> JSONResponse:
    """Save each uploaded part of a multipart form below the given directory."""
    root = _storage_path(dir_path)
    try:
        saved = await save_form_post_as_files(request, root, size_limit=MAX_FORM_BYTES)
    except FileRelayError as exc:
        raise _http_error(exc)
    return JSONResponse({"saved": [_relative(p) for p in saved]}, status_code=201)


@app.get("/api/files/{file_path:path}/meta")
async def file_meta(file_path: str, algorithm: str = DEFAULT_HASH_ALGORITHM) -> JSONResponse:
    path = _storage_path(file_path)
    try:
        _, is_file = is_dir_file(path)
        if not is_file:
            raise HTTPException(status_code=404, detail="Not found")
        digest = file_hash(path, algorithm)
        content_type = file_content_type(path)
    except FileRelayError as exc:
        raise _http_error(exc)
    return JSONResponse(
        {
            "path": _relative(path),
            "size": path.stat().st_size,
            "algorithm": algorithm,
            "hash": digest,
            "content_type": content_type,
        }
    )


@app.get("/api/dirs/{dir_path:path}")
async def list_dir(dir_path: str) -> JSONResponse:
    path = _storage_path(dir_path)
    try:
        children = children_of_dir(path)
    except FileRelayError as exc:
        raise _http_error(exc)
    return JSONResponse({"path": _relative(path), "children": children})


@app.post("/api/archive")
async def create_archive(payload: ArchiveRequest) -> JSONResponse:
    """Pack a directory (or a single file) into a ZIP archive."""
    source = _storage_path(payload.source)
    archive = _storage_path(payload.archive)
    try:
        is_dir, is_file = is_dir_file(source)
        if is_dir:
            entries = zip_dir(source, archive)
        elif is_file:
            entries = zip_file(source, archive)
        else:
            raise NotFoundError("Source path does not exist", path=str(source))
    except FileRelayError as exc:
        raise _http_error(exc)
    return JSONResponse({"archive": _relative(archive), "entries": entries}, status_code=201)


@app.post("/api/extract")
async def extract_archive(payload: ExtractRequest) -> JSONResponse:
    """Extract a ZIP archive into a directory that must not exist yet."""
    archive = _storage_path(payload.archive)
    destination = _storage_path(payload.destination)
    if destination == STORAGE_ROOT.resolve():
        raise HTTPException(status_code=409, detail="Already exists")
    try:
        entries = unzip(archive, destination)
    except FileRelayError as exc:
        raise _http_error(exc)
    return JSONResponse({"destination": _relative(destination), "entries": entries}, status_code=201)


@app.get("/api/archive/entries")
async def archive_entries(archive: str) -> JSONResponse:
    path = _storage_path(archive)
    try:
        names = list_entries(path)
    except FileRelayError as exc:
        raise _http_error(exc)
    return JSONResponse({"archive": _relative(path), "entries": names})


@app.post("/api/copy")
async def copy_path(payload: CopyRequest) -> JSONResponse:
    source = _storage_path(payload.source)
    destination = _storage_path(payload.destination)
    try:
        is_dir, is_file = is_dir_file(source)
        if is_dir:
            copy_dir(source, destination)
        elif is_file:
            if any(is_dir_file(destination)):
                raise AlreadyExistsError("Destination already exists", path=str(destination))
            copy_file(source, destination)
        else:
            raise NotFoundError("Source path does not exist", path=str(source))
    except FileRelayError as exc:
        raise _http_error(exc)
    return JSONResponse({"destination": _relative(destination)}, status_code=201)


_PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


@app.api_route("/proxy/{upstream_path:path}", methods=_PROXY_METHODS)
async def proxy(upstream_path: str, request: Request) -> Response:
    """Forward the request to FILERELAY_UPSTREAM_URL and relay the reply."""
    if not UPSTREAM_URL:
        raise HTTPException(status_code=404, detail="Proxy not configured")
    url = f"{UPSTREAM_URL}/{upstream_path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    try:
        response = await forward_request_to_url(request, url)
    except FileRelayError as exc:
        raise _http_error(exc)
    return forward_response_to_client(response)


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
