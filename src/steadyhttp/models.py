"""Canonical Pydantic configuration models shared across steadyhttp.

Every configuration object is an immutable value: models are declared
with ``frozen=True`` and "overriding" an option means building a new model
from a base plus explicit changes (:meth:`ClientConfig.with_overrides`,
:meth:`pydantic.BaseModel.model_copy`).  The models fall into three groups:

**Policies** -- :class:`CachePolicy` and :class:`RetryPolicy`, resolvable
per client and per call.

**Client configuration** -- :class:`ClientConfig` (client defaults) and
:class:`RequestOptions` (per-call overrides).  Callback and interceptor
fields hold plain callables and are never serialised.

**Socket configuration** -- :class:`SocketConfig` for
:class:`~steadyhttp.socket.ReconnectingSocketSession`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from steadyhttp.exceptions import RequestError
from steadyhttp.response import ApiResponse
from steadyhttp.status import StatusClassifier


# --- Policies ---


class CachePolicy(BaseModel):
    """Response caching settings.

    A ``max_age`` of ``0`` disables caching for the call.
    """

    model_config = ConfigDict(frozen=True)

    max_age: float = Field(default=3600.0, ge=0, description="Entry lifetime in seconds")
    max_size: int = Field(default=100, gt=0, description="Capacity of the default memory store")
    force_refresh: bool = Field(
        default=False, description="Skip the lookup but still store the fresh response"
    )

    @property
    def enabled(self) -> bool:
        return self.max_age > 0


class RetryPolicy(BaseModel):
    """Retry-with-backoff settings.

    ``max_attempts`` counts *total* attempts, so ``3`` means one initial
    try plus up to two retries; ``0`` and ``1`` both mean a single try.
    A ``retry_evaluator`` replaces every built-in rule, including the
    attempt limit.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=0)
    delay: float = Field(default=1.0, ge=0, description="Base delay in seconds")
    max_delay: float = Field(default=30.0, ge=0, description="Delay ceiling in seconds")
    retry_on_timeout: bool = True
    retry_status_codes: frozenset[int] = Field(
        default=frozenset({408, 429, 500, 502, 503, 504})
    )
    retry_exceptions: tuple[type[BaseException], ...] = Field(
        default=(httpx.NetworkError, httpx.TimeoutException, httpx.RemoteProtocolError),
        description="Cause categories that are retried",
    )
    retry_evaluator: Optional[Callable[[RequestError, int], bool]] = Field(
        default=None, exclude=True
    )


# --- Client configuration ---


class ClientConfig(BaseModel):
    """Client-wide defaults for :class:`~steadyhttp.client.AsyncClient`.

    Every option can be overridden for a single call through
    :class:`RequestOptions`.

    Example::

        ClientConfig(
            base_url="https://jsonplaceholder.typicode.com",
            cache=CachePolicy(max_age=300),
            retry=RetryPolicy(max_attempts=3, delay=0.5),
        )
    """

    model_config = ConfigDict(frozen=True)

    base_url: Optional[str] = Field(default=None, description="Prefix for relative paths")
    headers: dict[str, str] = Field(default_factory=dict, description="Default request headers")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    debug: bool = Field(default=False, description="Emit diagnostic log lines")
    follow_redirects: bool = True
    verify_ssl: bool = True
    cache: Optional[CachePolicy] = Field(
        default=None, description="Default cache policy; None caches only on request"
    )
    retry: Optional[RetryPolicy] = Field(
        default=None, description="Default retry policy; None disables retries"
    )
    status: StatusClassifier = Field(default_factory=StatusClassifier)

    on_error: Optional[Callable[[RequestError], Any]] = Field(default=None, exclude=True)
    on_done: Optional[Callable[[ApiResponse, Optional[RequestError]], Any]] = Field(
        default=None, exclude=True
    )
    request_interceptor: Optional[Callable[..., Any]] = Field(default=None, exclude=True)
    response_interceptor: Optional[Callable[..., Any]] = Field(default=None, exclude=True)

    def with_overrides(self, **overrides: Any) -> ClientConfig:
        """Return a new config with the non-``None`` *overrides* applied."""
        update = {key: value for key, value in overrides.items() if value is not None}
        return type(self).model_validate({**dict(self), **update})


class RequestOptions(BaseModel):
    """Per-call overrides.  ``None`` means "use the client default"."""

    model_config = ConfigDict(frozen=True)

    base_url: Optional[str] = None
    debug: Optional[bool] = None
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)
    cache: Optional[CachePolicy] = None
    retry: Optional[RetryPolicy] = None
    status: Optional[StatusClassifier] = None
    on_error: Optional[Callable[[RequestError], Any]] = None
    on_done: Optional[Callable[[ApiResponse, Optional[RequestError]], Any]] = None
    request_interceptor: Optional[Callable[..., Any]] = None
    response_interceptor: Optional[Callable[..., Any]] = None
    parser: Optional[Callable[[Any], Any]] = Field(
        default=None, description="Converts the decoded body into the caller's type"
    )
    save_file_path: Optional[Path] = Field(
        default=None, description="Write binary bodies here and return the path"
    )
    on_send_progress: Optional[Callable[[int, int], Any]] = None
    on_receive_progress: Optional[Callable[[int, int], Any]] = None


# --- Socket configuration ---


class SocketConfig(BaseModel):
    """Settings for :class:`~steadyhttp.socket.ReconnectingSocketSession`."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="WebSocket endpoint (ws:// or wss://)")
    token: Optional[str] = Field(default=None, description="Bearer token for the handshake")
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)
    debug: bool = False
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_base_delay: float = Field(default=3.0, ge=0, description="Seconds")
    reconnect_max_delay: float = Field(default=30.0, ge=0, description="Seconds")
    heartbeat_interval: float = Field(default=25.0, gt=0, description="Seconds")
    heartbeat_timeout: float = Field(default=30.0, gt=0, description="Seconds")
