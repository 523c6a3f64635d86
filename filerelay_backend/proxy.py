"""Forward HTTP traffic to other servers and persist inbound uploads.

``forward_request_to_url`` and ``forward_response_to_client`` are meant to be
used together from a route handler::

    @app.api_route("/api/{path:path}", methods=["GET", "POST"])
    async def api_proxy(path: str, request: Request):
        try:
            upstream = await forward_request_to_url(request, f"https://apiserver.example/{path}")
        except UpstreamError:
            raise HTTPException(status_code=502, detail="Error in proxy server.")
        return forward_response_to_client(upstream)
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from starlette.datastructures import UploadFile

from .config import (
    COPY_CHUNK_BYTES,
    DEFAULT_DIR_MODE,
    DEFAULT_FILE_MODE,
    MAX_BODY_BYTES,
    MAX_FORM_BYTES,
    PROXY_TIMEOUT_SECONDS,
)
from .errors import (
    AlreadyExistsError,
    MalformedInputError,
    PayloadTooLargeError,
    StorageIOError,
    UpstreamError,
)
from .paths import is_dir_file
from .security import safe_join

logger = logging.getLogger(__name__)

# Framing headers the sending side recomputes; everything else is copied as-is.
_REQUEST_SKIP_HEADERS = {b"host", b"transfer-encoding"}
_RESPONSE_SKIP_HEADERS = {b"transfer-encoding"}

_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    """Shared outbound client, created on first use."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(timeout=PROXY_TIMEOUT_SECONDS, follow_redirects=False)
    return _client


async def close_http_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


async def forward_request_to_url(
    request: Request,
    url: str,
    client: Optional[httpx.AsyncClient] = None,
) -> httpx.Response:
    """Send an equivalent of ``request`` to ``url`` and return the reply.

    Method, headers and body stream are carried over. The returned response
    has not been read yet; pass it to forward_response_to_client or close it.
    """
    client = client or get_http_client()
    headers = [(k, v) for k, v in request.headers.raw if k.lower() not in _REQUEST_SKIP_HEADERS]
    try:
        outbound = client.build_request(request.method, url, headers=headers, content=request.stream())
    except httpx.InvalidURL as exc:
        raise MalformedInputError(f"Invalid upstream URL: {exc}", path=url) from exc

    try:
        response = await client.send(outbound, stream=True)
    except httpx.HTTPError as exc:
        logger.warning("Forwarding %s %s failed: %s", request.method, url, exc)
        raise UpstreamError(f"Upstream request failed: {exc}", path=url) from exc
    logger.debug("Forwarded %s %s -> %d", request.method, url, response.status_code)
    return response


async def _relay_body(response: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_raw():
            yield chunk
    finally:
        await response.aclose()


def forward_response_to_client(response: httpx.Response) -> StreamingResponse:
    """Relay an upstream response: headers, status code, then the raw body.

    The body is streamed undecoded so Content-Encoding and Content-Length stay
    valid. The upstream response is closed once the body has been sent, and
    also when the client disconnects before the body is streamed.
    """
    relay = StreamingResponse(
        _relay_body(response),
        status_code=response.status_code,
        background=BackgroundTask(response.aclose),
    )
    relay.raw_headers = [
        (k.lower(), v) for k, v in response.headers.raw if k.lower() not in _RESPONSE_SKIP_HEADERS
    ]
    return relay


async def _read_body(request: Request, max_bytes: int) -> bytes:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise PayloadTooLargeError("Request body too large")

    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > max_bytes:
            raise PayloadTooLargeError("Request body too large")
        chunks.append(chunk)
    return b"".join(chunks)


def _create_file_opener(path: str, flags: int) -> int:
    return os.open(path, flags, DEFAULT_FILE_MODE)


async def save_request_body_as_file(
    request: Request,
    file_path: str | os.PathLike[str],
    overwrite: bool = False,
    max_bytes: int = MAX_BODY_BYTES,
    make_parents: bool = False,
) -> int:
    """Save the body of a request to ``file_path``.

    With ``overwrite`` false, anything already at ``file_path`` is an error,
    including a file created by someone else while the body was being read.
    The whole body is held in memory, so ``max_bytes`` should stay small.
    Missing parent directories are created only with ``make_parents``, and
    only once the body has been accepted. Returns the number of bytes written.
    """
    path = os.fspath(file_path)
    if not overwrite:
        is_dir, is_file = is_dir_file(path)
        if is_dir or is_file:
            raise AlreadyExistsError("File already exists", path=path)

    data = await _read_body(request, max_bytes)

    if make_parents:
        parent = os.path.dirname(path)
        try:
            os.makedirs(parent, DEFAULT_DIR_MODE, exist_ok=True)
        except OSError as exc:
            raise StorageIOError(f"Cannot create directory: {exc.strerror or exc}", path=parent) from exc

    # "xb" creates with O_EXCL; a file that appeared after the check is refused.
    mode = "wb" if overwrite else "xb"
    try:
        with open(path, mode, opener=_create_file_opener) as fh:
            fh.write(data)
    except FileExistsError as exc:
        raise AlreadyExistsError("File already exists", path=path) from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot write file: {exc.strerror or exc}", path=path) from exc
    logger.info("Saved %d byte(s) to %s", len(data), path)
    return len(data)


def _upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


async def save_form_post_as_files(
    request: Request,
    dir_path: str | os.PathLike[str],
    size_limit: int = MAX_FORM_BYTES,
) -> list[Path]:
    """Save every uploaded file of a multipart form below ``dir_path``.

    Each part is written to ``dir_path/<field name>``; field names may contain
    subdirectories, which are created. Plain (non-file) fields are ignored.
    Nothing is written when the uploads exceed ``size_limit`` in total or
    when any field name would escape ``dir_path``.
    """
    root = Path(dir_path)
    written: list[Path] = []

    async with request.form() as form:
        uploads = [(name, value) for name, value in form.multi_items() if isinstance(value, UploadFile)]

        total = sum(_upload_size(upload) for _, upload in uploads)
        if total > size_limit:
            raise PayloadTooLargeError(f"Form uploads exceed {size_limit} bytes")

        is_dir, is_file = is_dir_file(root)
        if is_file:
            raise AlreadyExistsError("File exists at path", path=str(root))

        targets = []
        for name, upload in uploads:
            target = safe_join(root, name)
            if target == root.resolve():
                raise MalformedInputError("Upload field name must name a file", path=name)
            targets.append((target, upload))

        if not is_dir:
            try:
                os.makedirs(root, DEFAULT_DIR_MODE, exist_ok=True)
            except OSError as exc:
                raise StorageIOError(f"Cannot create directory: {exc.strerror or exc}", path=str(root)) from exc

        for target, upload in targets:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                await upload.seek(0)
                with open(target, "wb") as fh:
                    shutil.copyfileobj(upload.file, fh, COPY_CHUNK_BYTES)
            except OSError as exc:
                raise StorageIOError(f"Cannot write upload: {exc.strerror or exc}", path=str(target)) from exc
            logger.debug("Saved upload %s (%s)", target, upload.filename)
            written.append(target)

    logger.info("Saved %d upload(s) under %s", len(written), root)
    return written
