"""Exception hierarchy for steadyhttp.

All exceptions inherit from :class:`SteadyError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`steadyhttp.exit_codes`.
Request failures are modelled by :class:`RequestError`, the structured error
attached to every error envelope returned by the request pipeline.

Subclass hierarchy::

    SteadyError (exit 1)
    +-- ConfigError            (exit 1)
    +-- RequestError           (exit 1)
        +-- NetworkError       (exit 6)
        +-- TimeoutError_      (exit 6)
        +-- HttpError          (exit 1)
        |   +-- ClientError    (exit 4)
        |   |   +-- RateLimitError
        |   +-- ServerError    (exit 5)
        +-- ParseError         (exit 7)
        +-- InterceptorError   (exit 1)
        +-- DisposedError      (exit 1)

The derived flags on :class:`RequestError` (``is_client_error``,
``is_timeout``, ``is_retryable`` ...) are computed from the status code and
the originating cause every time they are read; nothing is stored twice.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

import httpx

from steadyhttp.exit_codes import (
    EXIT_CLIENT_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_PARSE_ERROR,
    EXIT_SERVER_ERROR,
)

if TYPE_CHECKING:
    from steadyhttp.status import StatusClassifier


_NETWORK_CAUSES: tuple[type[BaseException], ...] = (
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    OSError,
)
_TIMEOUT_CAUSES: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    asyncio.TimeoutError,
)

_STATUS_REQUEST_TIMEOUT = 408
_STATUS_TOO_MANY_REQUESTS = 429


class SteadyError(Exception):
    """Base exception for all steadyhttp errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(SteadyError):
    """Raised for configuration problems (invalid config file, bad env values)."""


class RequestError(SteadyError):
    """Structured error describing why a request failed.

    Instances travel inside error envelopes
    (:attr:`~steadyhttp.response.ApiResponse.error`) and are handed to the
    error and completion callbacks.  They are only *raised* at the caller
    for disposal and for streaming downloads.

    Args:
        message: Human-readable description.
        status_code: HTTP status of the response, when one was received.
        cause: The low-level exception that triggered the failure.
        url: The request URL.
        method: The HTTP method.
        timestamp: Creation time; defaults to now (UTC).
        classifier: The status classifier that was active for the call.
            Used by :attr:`is_client_error` / :attr:`is_server_error`.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        classifier: Optional[StatusClassifier] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.cause = cause
        self.url = url
        self.method = method
        self.timestamp = timestamp or datetime.now(timezone.utc)
        self.classifier = classifier

    # ------------------------------------------------------------------ #
    # Construction helpers
    # ------------------------------------------------------------------ #

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
    ) -> RequestError:
        """Wrap a low-level exception, picking the matching subclass.

        An existing :class:`RequestError` is returned unchanged.
        """
        if isinstance(exc, RequestError):
            return exc

        error_cls: type[RequestError] = RequestError
        prefix = "Unexpected error"
        if isinstance(exc, _TIMEOUT_CAUSES):
            error_cls, prefix = TimeoutError_, "Request timeout"
        elif isinstance(exc, _NETWORK_CAUSES):
            error_cls, prefix = NetworkError, "Network error"
        elif isinstance(exc, httpx.HTTPError):
            prefix = "HTTP error"

        detail = str(exc) or type(exc).__name__
        return error_cls(
            f"{prefix}: {detail}",
            status_code=status_code,
            cause=exc,
            url=url,
            method=method,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequestError:
        """Rebuild an error from :meth:`to_dict` output.

        The original ``cause`` object cannot be restored; only its text
        survives in the message.
        """
        error_cls = _ERROR_TYPES.get(data.get("type", ""), RequestError)
        timestamp = data.get("timestamp")
        return error_cls(
            data["message"],
            status_code=data.get("status_code"),
            url=data.get("url"),
            method=data.get("method"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else None,
        )

    def copy_with(self, **overrides: Any) -> RequestError:
        """Return a new error of the same type with *overrides* applied."""
        fields: dict[str, Any] = {
            "status_code": self.status_code,
            "cause": self.cause,
            "url": self.url,
            "method": self.method,
            "timestamp": self.timestamp,
            "classifier": self.classifier,
        }
        fields.update(overrides)
        message = fields.pop("message", self.message)
        return type(self)(message, **fields)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-friendly dict."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
            "url": self.url,
            "method": self.method,
            "timestamp": self.timestamp.isoformat(),
            "cause": repr(self.cause) if self.cause is not None else None,
        }

    # ------------------------------------------------------------------ #
    # Derived classification
    # ------------------------------------------------------------------ #

    def _active_classifier(self) -> StatusClassifier:
        if self.classifier is not None:
            return self.classifier
        from steadyhttp.status import StatusClassifier

        return StatusClassifier()

    @property
    def is_client_error(self) -> bool:
        """Status code is in the active classifier's client-error set."""
        if self.status_code is None:
            return False
        return self._active_classifier().is_client_error(self.status_code)

    @property
    def is_server_error(self) -> bool:
        """Status code is in the active classifier's server-error set."""
        if self.status_code is None:
            return False
        return self._active_classifier().is_server_error(self.status_code)

    @property
    def is_network_error(self) -> bool:
        """No usable response: the cause is a connection-level failure."""
        if isinstance(self, NetworkError):
            return True
        return isinstance(self.cause, _NETWORK_CAUSES) and not self.is_timeout

    @property
    def is_timeout(self) -> bool:
        """The server reported 408 or the transport timed out."""
        if isinstance(self, TimeoutError_):
            return True
        if self.status_code == _STATUS_REQUEST_TIMEOUT:
            return True
        return isinstance(self.cause, _TIMEOUT_CAUSES)

    @property
    def is_rate_limited(self) -> bool:
        """The server answered 429 Too Many Requests."""
        return self.status_code == _STATUS_TOO_MANY_REQUESTS

    @property
    def is_retryable(self) -> bool:
        """Heuristic retryability, independent of any configured retry policy."""
        return (
            self.is_network_error
            or self.is_server_error
            or self.is_timeout
            or self.is_rate_limited
        )

    def __str__(self) -> str:
        parts = [f"{type(self).__name__}: {self.message}"]
        if self.status_code is not None:
            parts.append(f"(status: {self.status_code})")
        if self.method and self.url:
            parts.append(f"[{self.method} {self.url}]")
        elif self.url:
            parts.append(f"[{self.url}]")
        return " ".join(parts)


class NetworkError(RequestError):
    """No response was received (connection refused, reset, DNS failure)."""

    exit_code = EXIT_CONNECTION_ERROR


class TimeoutError_(RequestError):
    """The transport timed out waiting for the server.

    Named with a trailing underscore to avoid shadowing the built-in
    ``TimeoutError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class HttpError(RequestError):
    """The response status was classified as an error by the active classifier."""


class ClientError(HttpError):
    """The response status is in the classifier's client-error set."""

    exit_code = EXIT_CLIENT_ERROR


class RateLimitError(ClientError):
    """The server answered 429 Too Many Requests."""


class ServerError(HttpError):
    """The response status is in the classifier's server-error set."""

    exit_code = EXIT_SERVER_ERROR


class ParseError(RequestError):
    """The response body could not be decoded or converted by the parser."""

    exit_code = EXIT_PARSE_ERROR


class InterceptorError(RequestError):
    """A request or response interceptor raised."""


class DisposedError(RequestError):
    """The client or socket session was used after it was torn down."""


_ERROR_TYPES: dict[str, type[RequestError]] = {
    cls.__name__: cls
    for cls in (
        RequestError,
        NetworkError,
        TimeoutError_,
        HttpError,
        ClientError,
        RateLimitError,
        ServerError,
        ParseError,
        InterceptorError,
        DisposedError,
    )
}
