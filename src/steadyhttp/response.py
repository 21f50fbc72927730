"""The response envelope returned by every pipeline call.

:class:`ApiResponse` is a uniform success-or-error wrapper.  Successful
calls carry the decoded payload in :attr:`ApiResponse.data`; failed calls
carry a :class:`~steadyhttp.exceptions.RequestError` in
:attr:`ApiResponse.error` and no payload.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from steadyhttp.exceptions import RequestError
from steadyhttp.status import StatusCategory


class ResponseType(str, enum.Enum):
    """How the response body was interpreted."""

    JSON = "json"
    TEXT = "text"
    HTML = "html"
    BINARY = "binary"
    FILE = "file"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ApiResponse:
    """Immutable result of a request.

    Attributes:
        status_code: HTTP status, or ``0`` when no response was received.
        data: Decoded payload (parser output, ``dict``/``list``, ``str``,
            ``bytes`` or a :class:`~pathlib.Path` for saved files).
            Always ``None`` for error envelopes.
        type: How the body was interpreted.
        headers: Response headers (lower-cased names).
        success: Verdict of the active status classifier.
        error: The structured error for failed calls.
        url: The resolved request URL.
        method: The HTTP method.
        duration: Wall-clock time spent on the call.
        category: Classifier category of :attr:`status_code`.
        from_cache: ``True`` when served from the response cache.
    """

    status_code: int
    data: Any = None
    type: ResponseType = ResponseType.UNKNOWN
    headers: dict[str, str] = field(default_factory=dict)
    success: bool = True
    error: Optional[RequestError] = None
    url: Optional[str] = None
    method: Optional[str] = None
    duration: timedelta = timedelta(0)
    category: Optional[StatusCategory] = None
    from_cache: bool = False

    @classmethod
    def failure(
        cls,
        error: RequestError,
        url: Optional[str] = None,
        method: Optional[str] = None,
        duration: timedelta = timedelta(0),
    ) -> ApiResponse:
        """Build an error envelope around *error*."""
        category = None
        if error.status_code is not None and error.classifier is not None:
            category = error.classifier.category(error.status_code)
        return cls(
            status_code=error.status_code or 0,
            data=None,
            type=ResponseType.UNKNOWN,
            success=False,
            error=error,
            url=url or error.url,
            method=method or error.method,
            duration=duration,
            category=category,
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None or not self.success

    @property
    def is_json(self) -> bool:
        return self.type == ResponseType.JSON

    @property
    def is_text(self) -> bool:
        return self.type == ResponseType.TEXT

    @property
    def is_html(self) -> bool:
        return self.type == ResponseType.HTML

    @property
    def is_binary(self) -> bool:
        return self.type == ResponseType.BINARY

    @property
    def is_file(self) -> bool:
        return self.type == ResponseType.FILE
