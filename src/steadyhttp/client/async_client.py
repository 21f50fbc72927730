"""Asynchronous HTTP client facade.

This module provides :class:`AsyncClient`, the public entry point for HTTP
calls.  It owns an :class:`httpx.AsyncClient` used as the transport, a
:class:`~steadyhttp.cache.CacheStore` and a
:class:`~steadyhttp.client.executor.RequestExecutor` that runs the request
pipeline.  Every verb returns an
:class:`~steadyhttp.response.ApiResponse` envelope instead of raising.

Streaming downloads (:meth:`AsyncClient.download_file`) are the exception:
they write straight to disk and raise
:class:`~steadyhttp.exceptions.RequestError` on failure.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

import httpx

from steadyhttp.cache import CacheStore, MemoryCacheStore, utcnow
from steadyhttp.client.codec import content_length
from steadyhttp.client.executor import RequestExecutor, resolve_url
from steadyhttp.exceptions import RequestError
from steadyhttp.interceptors import invoke_callback
from steadyhttp.models import CachePolicy, ClientConfig, RequestOptions
from steadyhttp.output import get_output
from steadyhttp.response import ApiResponse


class AsyncClient:
    """Asynchronous HTTP client with caching, retries and interceptors.

    Args:
        config: Client-wide defaults.  ``None`` uses :class:`ClientConfig`'s.
        transport: Optional httpx transport (e.g. :class:`httpx.MockTransport`).
        cache_store: Cache backend; defaults to a :class:`MemoryCacheStore`
            sized from the default cache policy.
        **config_overrides: Applied on top of *config* via
            :meth:`ClientConfig.with_overrides`.

    Example::

        async with AsyncClient(base_url="https://api.example.com") as client:
            response = await client.get("/users", cache=CachePolicy(max_age=60))
            if response.success:
                print(response.data)
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache_store: Optional[CacheStore] = None,
        **config_overrides: Any,
    ) -> None:
        base = config or ClientConfig()
        self._config = base.with_overrides(**config_overrides) if config_overrides else base
        self._http = httpx.AsyncClient(
            timeout=self._config.timeout,
            verify=self._config.verify_ssl,
            follow_redirects=self._config.follow_redirects,
            transport=transport,
        )
        self._owns_http = True
        max_size = (self._config.cache or CachePolicy()).max_size
        self._cache = cache_store or MemoryCacheStore(max_size=max_size)
        self._disposed = asyncio.Event()
        self._executor = RequestExecutor(
            self._config, self._http, self._cache, disposed=self._disposed
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def cache_store(self) -> CacheStore:
        return self._cache

    @property
    def is_disposed(self) -> bool:
        return self._disposed.is_set()

    # ------------------------------------------------------------------ #
    # Async context manager / disposal
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> AsyncClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Dispose the client.

        In-flight calls raise :class:`~steadyhttp.exceptions.DisposedError`;
        so does every later call.  Safe to call more than once.
        """
        if self._disposed.is_set():
            return
        self._disposed.set()
        if self._owns_http:
            await self._http.aclose()

    def with_overrides(self, **overrides: Any) -> AsyncClient:
        """Return a client with a modified config.

        The new client shares this client's transport, cache store and
        lifetime: closing this client also disposes the derived one.
        """
        derived = object.__new__(AsyncClient)
        derived._config = self._config.with_overrides(**overrides)
        derived._http = self._http
        derived._owns_http = False
        derived._cache = self._cache
        derived._disposed = self._disposed
        derived._executor = RequestExecutor(
            derived._config, self._http, self._cache, disposed=self._disposed
        )
        return derived

    # ------------------------------------------------------------------ #
    # Public request methods
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        files: Optional[Mapping[str, Any]] = None,
        options: Optional[RequestOptions] = None,
        **option_kwargs: Any,
    ) -> ApiResponse:
        """Run one call through the pipeline.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE).
            path: Path relative to ``base_url``, or an absolute URL.
            body: Structured payload (sent as JSON), ``str`` or ``bytes``.
            files: Attachments; turns the request into multipart form data.
            options: Per-call overrides.
            **option_kwargs: Individual :class:`RequestOptions` fields,
                applied on top of *options*.

        Returns:
            The success or error :class:`ApiResponse`.

        Raises:
            DisposedError: The client was closed.
        """
        if option_kwargs:
            base = dict(options) if options is not None else {}
            options = RequestOptions.model_validate({**base, **option_kwargs})
        return await self._executor.execute(
            method, path, body=body, files=files, options=options
        )

    async def get(self, path: str, **kwargs: Any) -> ApiResponse:
        """Send a GET request.  See :meth:`request`."""
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> ApiResponse:
        """Send a POST request.  See :meth:`request`."""
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> ApiResponse:
        """Send a PUT request.  See :meth:`request`."""
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> ApiResponse:
        """Send a PATCH request.  See :meth:`request`."""
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> ApiResponse:
        """Send a DELETE request.  See :meth:`request`."""
        return await self.request("DELETE", path, **kwargs)

    # ------------------------------------------------------------------ #
    # Cache management
    # ------------------------------------------------------------------ #

    async def cache_size(self) -> int:
        return await self._cache.size()

    async def clear_cache(self) -> None:
        await self._cache.clear()

    async def remove_cached_response(self, key: str) -> None:
        """Drop one entry; keys come from :func:`~steadyhttp.cache.make_cache_key`."""
        await self._cache.delete(key)

    async def cleanup_expired_cache(self) -> None:
        """Sweep every entry that has already expired."""
        await self._cache.cleanup(utcnow())

    # ------------------------------------------------------------------ #
    # Files
    # ------------------------------------------------------------------ #

    async def download_file(
        self,
        url: str,
        save_path: Union[str, Path],
        on_progress: Optional[Callable[[int, int], Any]] = None,
    ) -> Path:
        """Stream *url* to *save_path*.

        Unlike the verbs this bypasses the envelope: failures raise, and a
        partially written file is removed.

        Args:
            url: Absolute URL or path relative to ``base_url``.
            save_path: Destination file.
            on_progress: Called with ``(received, total)`` when the server
                announces a ``Content-Length``.

        Returns:
            The path written.

        Raises:
            RequestError: On a non-success status or any transport failure.
            DisposedError: The client was closed.
        """
        self._executor.ensure_open(url, "GET")
        target = resolve_url(self._config.base_url, url)
        path = Path(save_path)
        classifier = self._config.status

        async def _stream() -> None:
            try:
                async with self._http.stream("GET", target) as response:
                    if not classifier.is_success(response.status_code):
                        raise RequestError(
                            f"Download failed: HTTP {response.status_code}",
                            status_code=response.status_code,
                            url=target,
                            method="GET",
                            classifier=classifier,
                        )
                    total = content_length(response)
                    received = 0
                    path.parent.mkdir(parents=True, exist_ok=True)
                    try:
                        with path.open("wb") as fh:
                            async for chunk in response.aiter_bytes():
                                fh.write(chunk)
                                received += len(chunk)
                                if total != -1:
                                    invoke_callback(on_progress, received, total)
                    except BaseException:
                        path.unlink(missing_ok=True)
                        raise
            except RequestError:
                raise
            except (httpx.HTTPError, OSError) as exc:
                raise RequestError.from_exception(exc, url=target, method="GET") from exc

        await self._executor.until_disposed(_stream(), target, "GET")

        if self._config.debug:
            get_output().trace("steadyhttp", f"Downloaded {target} to {path}")
        return path

    def save_file(self, response: ApiResponse, path: Union[str, Path]) -> Optional[Path]:
        """Persist the body of a binary or file envelope to *path*.

        Failures are reported to the client-wide error handler and yield
        ``None``.
        """
        destination = Path(path)
        try:
            if isinstance(response.data, Path):
                shutil.copyfile(response.data, destination)
            elif isinstance(response.data, (bytes, bytearray)):
                destination.write_bytes(bytes(response.data))
            else:
                raise TypeError(f"Response type {response.type.value} has no file content")
        except (OSError, TypeError) as exc:
            error = RequestError(
                f"Failed to save file: {exc}", cause=exc, url=response.url, method=response.method
            )
            invoke_callback(self._config.on_error, error)
            get_output().warning(str(error))
            return None
        return destination
