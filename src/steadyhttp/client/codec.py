"""Request body encoding and response body decoding.

Encoding rules:

* file attachments win: the request becomes ``multipart/form-data`` and a
  mapping body is sent as form fields next to the files;
* ``bytes`` and ``str`` bodies are sent as-is;
* anything else is serialised as JSON.

Decoding follows the response ``Content-Type``: JSON (falling back to
text when the body is not valid JSON), HTML, text, and everything else as
binary -- written to disk when the caller asked for a file.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Mapping, Optional

import httpx

from steadyhttp.interceptors import invoke_callback
from steadyhttp.response import ResponseType

UPLOAD_CHUNK_SIZE = 1024
_DEFAULT_FILE_TYPE = "application/octet-stream"

ProgressCallback = Callable[[int, int], Any]


def _file_part(name: str, source: Any) -> Any:
    """Normalise one attachment into an httpx ``files`` value."""
    if isinstance(source, (str, Path)):
        path = Path(source)
        return (path.name, path.read_bytes(), _DEFAULT_FILE_TYPE)
    if isinstance(source, (bytes, bytearray)):
        return (name, bytes(source), _DEFAULT_FILE_TYPE)
    return source


def encode_body(body: Any, files: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Return the httpx keyword arguments that carry *body* and *files*.

    Args:
        body: Structured payload, ``str`` or ``bytes``.
        files: Attachment name to path, bytes, or an httpx file tuple.
    """
    if files:
        kwargs: dict[str, Any] = {
            "files": {name: _file_part(name, source) for name, source in files.items()}
        }
        if isinstance(body, Mapping):
            kwargs["data"] = {key: str(value) for key, value in body.items()}
        return kwargs
    if body is None:
        return {}
    if isinstance(body, (bytes, bytearray, str)):
        return {"content": body}
    return {"json": body}


def with_upload_progress(request: httpx.Request, callback: ProgressCallback) -> httpx.Request:
    """Rebuild *request* so its body streams in chunks, reporting progress.

    Requests without a body are returned unchanged.
    """
    payload = request.read()
    total = len(payload)
    if total == 0:
        return request

    async def _stream() -> AsyncIterator[bytes]:
        sent = 0
        for start in range(0, total, UPLOAD_CHUNK_SIZE):
            chunk = payload[start : start + UPLOAD_CHUNK_SIZE]
            sent += len(chunk)
            yield chunk
            invoke_callback(callback, sent, total)

    return httpx.Request(
        request.method,
        request.url,
        headers=request.headers,
        content=_stream(),
        extensions=request.extensions,
    )


async def read_body(
    response: httpx.Response,
    on_progress: Optional[ProgressCallback] = None,
) -> bytes:
    """Read a streamed response fully, reporting ``(received, total)``.

    ``total`` is ``-1`` when the server sent no ``Content-Length``.
    """
    total = content_length(response)
    chunks: list[bytes] = []
    received = 0
    async for chunk in response.aiter_bytes():
        chunks.append(chunk)
        received += len(chunk)
        invoke_callback(on_progress, received, total)
    return b"".join(chunks)


def content_length(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("content-length", -1))
    except ValueError:
        return -1


def _charset(content_type: str) -> str:
    for part in content_type.split(";")[1:]:
        key, _, value = part.strip().partition("=")
        if key.lower() == "charset" and value:
            return value.strip('"')
    return "utf-8"


def decode_text(content: bytes, content_type: str = "") -> str:
    """Decode *content* with the declared charset, replacing bad bytes."""
    try:
        return content.decode(_charset(content_type), errors="replace")
    except LookupError:
        return content.decode("utf-8", errors="replace")


def decode_body(
    content: bytes,
    content_type: str,
    save_file_path: Optional[Path] = None,
) -> tuple[ResponseType, Any]:
    """Interpret a response body according to its content type.

    Returns:
        ``(type, data)`` where data is a ``dict``/``list``/scalar for JSON,
        ``str`` for text and HTML, ``bytes`` for binary bodies, the written
        :class:`~pathlib.Path` when *save_file_path* is given, and ``None``
        for an empty body of unknown type.
    """
    mime = content_type.split(";")[0].strip().lower()

    if mime == "application/json" or mime.endswith("+json"):
        text = decode_text(content, content_type)
        if not text.strip():
            return ResponseType.JSON, None
        try:
            return ResponseType.JSON, json.loads(text)
        except ValueError:
            return ResponseType.JSON, text
    if "html" in mime:
        return ResponseType.HTML, decode_text(content, content_type)
    if mime.startswith("text/"):
        return ResponseType.TEXT, decode_text(content, content_type)

    if save_file_path is not None:
        path = Path(save_file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return ResponseType.FILE, path
    if not content and not mime:
        return ResponseType.UNKNOWN, None
    return ResponseType.BINARY, content
