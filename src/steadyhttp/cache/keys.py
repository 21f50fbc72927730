"""Deterministic cache keys for requests."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Optional

import httpx


def _canonical_body(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, (bytes, bytearray)):
        return "bytes:" + hashlib.sha256(bytes(body)).hexdigest()
    if isinstance(body, str):
        return "text:" + body
    return "json:" + json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)


def make_cache_key(
    method: str,
    url: str,
    params: Optional[Mapping[str, Any]] = None,
    body: Any = None,
    headers: Optional[Mapping[str, str]] = None,
) -> str:
    """Generate a cache key from the request's identifying parts.

    The key is the SHA-256 of ``METHOD|URL-without-query|query|body|headers``
    where the query (the URL's own parameters merged with *params*) and the
    headers are sorted, and structured bodies are serialised with sorted
    keys.  Two requests that differ only in parameter or header order map
    to the same key.

    Args:
        method: HTTP method.
        url: Absolute request URL, possibly with a query string.
        params: Extra query parameters.
        body: Request body (structured data, ``str`` or ``bytes``).
        headers: Per-call headers that distinguish otherwise equal requests.
    """
    parsed = httpx.URL(url)
    if params:
        parsed = parsed.copy_merge_params({k: str(v) for k, v in params.items()})
    query = sorted(parsed.params.multi_items())
    port = f":{parsed.port}" if parsed.port else ""
    base = f"{parsed.scheme}://{parsed.host}{port}{parsed.path}"

    parts = [
        method.upper(),
        base,
        json.dumps(query, separators=(",", ":")),
        _canonical_body(body),
        json.dumps(
            sorted((k.lower(), v) for k, v in (headers or {}).items()),
            separators=(",", ":"),
        ),
    ]
    raw = "|".join(parts)
    return hashlib.sha256(raw.encode()).hexdigest()
