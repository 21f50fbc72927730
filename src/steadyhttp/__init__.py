"""steadyhttp -- resilient async HTTP client and reconnecting WebSocket session.

The HTTP side wraps :mod:`httpx` in a request pipeline with response
caching, retry with jittered exponential backoff, request/response
interceptors and a configurable status classifier.  Every call returns an
:class:`ApiResponse` envelope instead of raising.  The WebSocket side keeps
a logical connection alive across drops with reconnect backoff, a
heartbeat and an offline message queue.

Typical usage::

    from steadyhttp import AsyncClient, CachePolicy, RetryPolicy

    async with AsyncClient(base_url="https://api.example.com",
                           retry=RetryPolicy(max_attempts=3)) as client:
        response = await client.get("/users", cache=CachePolicy(max_age=60))

Modules:
    client: :class:`AsyncClient` and the request pipeline.
    socket: :class:`ReconnectingSocketSession`.
    models: Pydantic configuration models.
    status: :class:`StatusClassifier`.
    cache: Cache stores and keys.
    exceptions: Error taxonomy with exit-code mapping.
    app: Typer CLI entry point.
"""

__version__ = "0.1.0"

from steadyhttp.client import AsyncClient  # noqa: E402
from steadyhttp.exceptions import RequestError  # noqa: E402
from steadyhttp.models import (  # noqa: E402
    CachePolicy,
    ClientConfig,
    RequestOptions,
    RetryPolicy,
    SocketConfig,
)
from steadyhttp.query import QueryBuilder  # noqa: E402
from steadyhttp.response import ApiResponse, ResponseType  # noqa: E402
from steadyhttp.socket import ConnectionState, ReconnectingSocketSession  # noqa: E402
from steadyhttp.status import StatusCategory, StatusClassifier  # noqa: E402

__all__ = [
    "ApiResponse",
    "AsyncClient",
    "CachePolicy",
    "ClientConfig",
    "ConnectionState",
    "QueryBuilder",
    "ReconnectingSocketSession",
    "RequestError",
    "RequestOptions",
    "ResponseType",
    "RetryPolicy",
    "SocketConfig",
    "StatusCategory",
    "StatusClassifier",
    "__version__",
]
