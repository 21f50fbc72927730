"""HTTP client module for steadyhttp.

Provides the asynchronous client that wraps :mod:`httpx` with response
caching, retry with jittered exponential backoff, request/response
interceptors and a configurable status classifier.

Classes:
    :class:`AsyncClient` -- public facade, backed by :class:`httpx.AsyncClient`.
    :class:`RequestExecutor` -- the request pipeline used by the facade.

Example::

    from steadyhttp.client import AsyncClient

    async with AsyncClient(base_url="https://api.example.com") as client:
        resp = await client.get("/users")
"""

from steadyhttp.client.async_client import AsyncClient
from steadyhttp.client.executor import RequestExecutor

__all__ = ["AsyncClient", "RequestExecutor"]
