"""Interceptor context and invocation helpers for the request pipeline.

This module provides two pieces:

* :class:`RequestContext` -- a mutable dataclass describing the outgoing
  request.  The request interceptor receives it before the body is encoded
  and may rewrite the URL, headers, params or body.
* :func:`run_interceptor` and :func:`invoke_callback` -- uniform calling
  conventions for user hooks.  Interceptors may be plain functions or
  coroutines; their failures become
  :class:`~steadyhttp.exceptions.InterceptorError` and flow through the
  normal retry rules.  Callbacks (error and completion handlers) can never
  break the pipeline: their failures are reported as warnings.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from steadyhttp.exceptions import InterceptorError, RequestError
from steadyhttp.output import get_output


@dataclass
class RequestContext:
    """Mutable description of the request about to be sent.

    Attributes:
        method: HTTP method (e.g. ``"GET"``).
        url: Absolute request URL without the extra ``params``.
        headers: Merged request headers (mutable).
        params: Query parameters added on top of the URL's own (mutable).
        body: Structured payload, ``str`` or ``bytes``.
        files: File attachments, name to path or bytes.
        attempt: 1-based attempt number.
    """

    method: str = ""
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    files: dict[str, Any] = field(default_factory=dict)
    attempt: int = 1


RequestInterceptor = Callable[[RequestContext], Union[Awaitable[None], None]]
ResponseInterceptor = Callable[[httpx.Response], Union[Awaitable[None], None]]
ErrorHandler = Callable[[RequestError], Any]
CompletionHandler = Callable[[Any, Optional[RequestError]], Any]


async def run_interceptor(
    interceptor: Optional[Callable[[Any], Any]],
    target: Any,
    stage: str,
    url: Optional[str] = None,
    method: Optional[str] = None,
) -> None:
    """Invoke *interceptor* on *target*, awaiting coroutine results.

    Args:
        interceptor: The hook, or ``None`` to do nothing.
        target: :class:`RequestContext` or :class:`httpx.Response`.
        stage: ``"request"`` or ``"response"``, used in the error message.
        url: Request URL for error context.
        method: Request method for error context.

    Raises:
        InterceptorError: Wrapping whatever the interceptor raised.
    """
    if interceptor is None:
        return
    try:
        result = interceptor(target)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        raise InterceptorError(
            f"{stage.capitalize()} interceptor failed: {exc}",
            cause=exc,
            url=url,
            method=method,
        ) from exc


def invoke_callback(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    """Call a user callback, reporting (not propagating) its failures."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception as exc:
        name = getattr(callback, "__name__", type(callback).__name__)
        get_output().warning(f"Callback {name} raised {type(exc).__name__}: {exc}")
