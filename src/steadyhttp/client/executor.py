"""The request pipeline: cache, attempts, retry, classification, callbacks.

:class:`RequestExecutor` runs one logical call at a time per ``execute``
invocation and never raises for request failures -- they come back as
error envelopes (:meth:`~steadyhttp.response.ApiResponse.failure`).  The
only exception that reaches the caller is
:class:`~steadyhttp.exceptions.DisposedError`.

Per call the executor:

1. resolves the effective cache, retry and status policies;
2. answers from the cache when a valid entry exists;
3. runs attempts until one succeeds or the retry policy gives up, each
   attempt going through the request interceptor, the transport, the
   response interceptor, the status classifier, body decoding and the
   optional parser;
4. stores successful responses in the cache;
5. fires the error handler (per-call first, otherwise the client-wide one)
   and the completion handler.
"""

from __future__ import annotations

import asyncio
import copy
import random
import time
from dataclasses import replace
from datetime import timedelta
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

import httpx

from steadyhttp import retry as retry_rules
from steadyhttp.cache import CacheEntry, CacheStore, make_cache_key, utcnow
from steadyhttp.cache.cache import Clock
from steadyhttp.client.codec import decode_body, decode_text, encode_body, read_body, with_upload_progress
from steadyhttp.exceptions import (
    ClientError,
    DisposedError,
    HttpError,
    ParseError,
    RateLimitError,
    RequestError,
    ServerError,
)
from steadyhttp.interceptors import RequestContext, invoke_callback, run_interceptor
from steadyhttp.models import CachePolicy, ClientConfig, RequestOptions, RetryPolicy
from steadyhttp.output import get_output
from steadyhttp.response import ApiResponse
from steadyhttp.status import StatusCategory, StatusClassifier

T = TypeVar("T")

_SINGLE_ATTEMPT = RetryPolicy(max_attempts=1)
_CACHEABLE_METHODS = frozenset({"GET"})


def resolve_url(base_url: Optional[str], path: str) -> str:
    """Join *path* onto *base_url* unless *path* is already absolute.

    Raises:
        RequestError: When *path* is relative and there is no base URL.
    """
    if path.startswith(("http://", "https://")):
        return path
    if not base_url:
        raise RequestError(f"No base URL configured for relative path {path!r}", url=path)
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def classify_http_error(
    status_code: int,
    body: str,
    classifier: StatusClassifier,
    url: str,
    method: str,
) -> HttpError:
    """Build the :class:`HttpError` subclass matching *status_code*."""
    error_cls: type[HttpError] = HttpError
    if classifier.is_client_error(status_code):
        error_cls = RateLimitError if status_code == 429 else ClientError
    elif classifier.is_server_error(status_code):
        error_cls = ServerError
    return error_cls(
        f"HTTP {status_code}: {body}",
        status_code=status_code,
        url=url,
        method=method,
        classifier=classifier,
    )


class _Call:
    """Everything resolved once for a logical call."""

    def __init__(
        self,
        config: ClientConfig,
        method: str,
        path: str,
        body: Any,
        files: Optional[Mapping[str, Any]],
        options: RequestOptions,
    ) -> None:
        self.method = method
        self.url = path
        self.body = body
        self.files = dict(files or {})
        self.options = options
        self.cache: Optional[CachePolicy] = options.cache or config.cache
        self.retry: RetryPolicy = options.retry or config.retry or _SINGLE_ATTEMPT
        self.status: StatusClassifier = options.status or config.status
        self.base_url = options.base_url or config.base_url
        self.debug = config.debug if options.debug is None else options.debug
        self.timeout = options.timeout or config.timeout
        self.request_interceptor = options.request_interceptor or config.request_interceptor
        self.response_interceptor = options.response_interceptor or config.response_interceptor
        self.on_error = options.on_error or config.on_error
        self.on_done = options.on_done or config.on_done

        headers = httpx.Headers(config.headers)
        headers.update(options.headers)
        self.headers = dict(headers)

        self.caching = (
            self.cache is not None
            and self.cache.enabled
            and (method in _CACHEABLE_METHODS or options.cache is not None)
        )
        self.cache_key: Optional[str] = None

    def bind_url(self, path: str) -> None:
        """Resolve *path* against the effective base URL.

        Raises:
            RequestError: *path* is relative and there is no base URL.
        """
        self.url = resolve_url(self.base_url, path)
        if self.caching:
            self.cache_key = make_cache_key(
                self.method, self.url, self.options.params, self.body, self.options.headers
            )


class RequestExecutor:
    """Runs calls for :class:`~steadyhttp.client.AsyncClient`.

    Args:
        config: Client-wide defaults.
        http_client: Shared httpx client used as the transport.
        cache_store: Where successful responses are cached.
        sleep: Awaitable sleep used between attempts.
        rng: Jitter source for retry delays.
        disposed: Set when the owning client is torn down.
        clock: Timestamp source for cache entries.
    """

    def __init__(
        self,
        config: ClientConfig,
        http_client: httpx.AsyncClient,
        cache_store: CacheStore,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        disposed: Optional[asyncio.Event] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.config = config
        self._http = http_client
        self._cache = cache_store
        self._sleep = sleep
        self._rng = rng
        self._disposed = disposed or asyncio.Event()
        self._clock = clock

    @property
    def is_disposed(self) -> bool:
        return self._disposed.is_set()

    def ensure_open(self, url: Optional[str] = None, method: Optional[str] = None) -> None:
        if self._disposed.is_set():
            raise DisposedError("Client has been disposed", url=url, method=method)

    # ------------------------------------------------------------------ #
    # Public entry point
    # ------------------------------------------------------------------ #

    async def execute(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        files: Optional[Mapping[str, Any]] = None,
        options: Optional[RequestOptions] = None,
    ) -> ApiResponse:
        """Run one logical call and return its envelope.

        Raises:
            DisposedError: The client was disposed before or during the call.
        """
        method = method.upper()
        self.ensure_open(path, method)
        options = options or RequestOptions()
        started = time.perf_counter()

        call = _Call(self.config, method, path, body, files, options)
        try:
            call.bind_url(path)
        except RequestError as exc:
            exc.method = method
            return self._finish_failure(call, exc, started)
        url = call.url

        cached = await self._lookup(call, started)
        if cached is not None:
            invoke_callback(call.on_done, cached, None)
            return cached

        attempt = 1
        while True:
            try:
                response = await self.until_disposed(
                    self._attempt(call, attempt, started), call.url, call.method
                )
            except DisposedError:
                raise
            except Exception as exc:
                error = RequestError.from_exception(exc, url=url, method=method)
                if error.url is None:
                    error.url = url
                if error.method is None:
                    error.method = method
                decision = retry_rules.evaluate(call.retry, error, attempt, self._rng)
                if not decision.retry:
                    self._log(
                        call, f"Not retrying {method} {url} after attempt {attempt}: {decision.reason}"
                    )
                    return self._finish_failure(call, error, started)
                self._log(
                    call,
                    f"Retrying {method} {url} in {decision.delay:.2f}s "
                    f"(attempt {attempt}, {decision.reason})",
                )
                await self.until_disposed(self._sleep(decision.delay), call.url, call.method)
                attempt += 1
                continue

            await self._store(call, response)
            invoke_callback(call.on_done, response, None)
            return response

    # ------------------------------------------------------------------ #
    # Cache
    # ------------------------------------------------------------------ #

    async def _lookup(self, call: _Call, started: float) -> Optional[ApiResponse]:
        if not call.caching or call.cache_key is None or call.cache is None:
            return None
        if call.cache.force_refresh:
            self._log(call, f"Cache refresh forced for {call.method} {call.url}")
            return None
        entry = await self._cache.get(call.cache_key)
        if entry is None:
            return None
        self._log(call, f"Cache hit for {call.method} {call.url}")
        return _detached(entry.response, from_cache=True, duration=_elapsed(started))

    async def _store(self, call: _Call, response: ApiResponse) -> None:
        if not call.caching or call.cache_key is None or call.cache is None:
            return
        if response.category != StatusCategory.SUCCESS:
            return
        try:
            entry = CacheEntry(
                key=call.cache_key,
                response=_detached(response),
                created_at=self._clock(),
                max_age=timedelta(seconds=call.cache.max_age),
            )
            await self._cache.set(call.cache_key, entry)
        except Exception as exc:
            get_output().warning(f"Could not cache response for {call.url}: {exc}")
            return
        self._log(call, f"Cached response for {call.method} {call.url}")

    # ------------------------------------------------------------------ #
    # Attempts
    # ------------------------------------------------------------------ #

    async def _attempt(self, call: _Call, attempt: int, started: float) -> ApiResponse:
        ctx = RequestContext(
            method=call.method,
            url=call.url,
            headers=dict(call.headers),
            params=dict(call.options.params),
            body=call.body,
            files=dict(call.files),
            attempt=attempt,
        )
        self._log(call, f"{ctx.method} {ctx.url} (attempt {attempt})")
        await run_interceptor(call.request_interceptor, ctx, "request", ctx.url, ctx.method)

        request = self._http.build_request(
            ctx.method,
            ctx.url,
            params=ctx.params or None,
            headers=ctx.headers,
            timeout=call.timeout,
            **encode_body(ctx.body, ctx.files),
        )
        if call.options.on_send_progress is not None:
            request = with_upload_progress(request, call.options.on_send_progress)

        response = await self._http.send(request, stream=True)
        try:
            await run_interceptor(
                call.response_interceptor, response, "response", ctx.url, ctx.method
            )
            content = await read_body(response, call.options.on_receive_progress)
        finally:
            await response.aclose()

        status = response.status_code
        self._log(call, f"Response {status} {response.reason_phrase} for {ctx.method} {ctx.url}")
        content_type = response.headers.get("content-type", "")
        category = call.status.category(status)
        if category == StatusCategory.ERROR:
            raise classify_http_error(
                status, decode_text(content, content_type), call.status, ctx.url, ctx.method
            )

        response_type, data = decode_body(content, content_type, call.options.save_file_path)
        if call.options.parser is not None:
            try:
                data = call.options.parser(data)
            except Exception as exc:
                raise ParseError(
                    f"Failed to parse response: {exc}",
                    status_code=status,
                    cause=exc,
                    url=ctx.url,
                    method=ctx.method,
                    classifier=call.status,
                ) from exc

        return ApiResponse(
            status_code=status,
            data=data,
            type=response_type,
            headers=dict(response.headers),
            success=True,
            url=str(request.url),
            method=ctx.method,
            duration=_elapsed(started),
            category=category,
        )

    async def until_disposed(
        self, awaitable: Awaitable[T], url: Optional[str] = None, method: Optional[str] = None
    ) -> T:
        """Await *awaitable*, abandoning it if the client is disposed meanwhile.

        The abandoned work is cancelled and allowed to unwind before
        :class:`DisposedError` is raised.
        """
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._disposed.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.wait({task})
        if not self._disposed.is_set():
            return task.result()
        if not task.cancelled():
            # disposal wins over an outcome that raced it
            task.exception()
        raise DisposedError(
            "Client disposed while the request was in flight", url=url, method=method
        )

    # ------------------------------------------------------------------ #
    # Failure path
    # ------------------------------------------------------------------ #

    def _finish_failure(self, call: _Call, error: RequestError, started: float) -> ApiResponse:
        if error.classifier is None:
            error.classifier = call.status
        envelope = ApiResponse.failure(
            error, url=call.url, method=call.method, duration=_elapsed(started)
        )
        self._log(call, f"Request failed: {error}")
        invoke_callback(call.on_error, error)
        invoke_callback(call.on_done, envelope, error)
        return envelope

    def _log(self, call: _Call, message: str) -> None:
        if call.debug:
            get_output().trace("steadyhttp", message)


def _elapsed(started: float) -> timedelta:
    return timedelta(seconds=time.perf_counter() - started)


def _detached(response: ApiResponse, **changes: Any) -> ApiResponse:
    """Copy *response* so cached entries never share payloads with callers."""
    return replace(
        response,
        data=copy.deepcopy(response.data),
        headers=copy.deepcopy(response.headers),
        **changes,
    )
