"""Typer application and CLI entry point for steadyhttp.

The CLI is a thin surface over the library:

* ``request`` -- one call through :class:`~steadyhttp.client.AsyncClient`,
  with optional retries and caching, printing the decoded payload.
* ``download`` -- stream a URL to a file.
* ``listen`` -- open a :class:`~steadyhttp.socket.ReconnectingSocketSession`
  and print the events it receives.
* ``config`` -- show the effective client configuration.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``.

See Also:
    :mod:`steadyhttp.config`: Configuration precedence resolution.
    :mod:`steadyhttp.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import typer

from steadyhttp import __version__
from steadyhttp.exit_codes import EXIT_CONNECTION_ERROR, EXIT_GENERIC_FAILURE, EXIT_INVALID_USAGE

app = typer.Typer(
    name="steadyhttp",
    help="Resilient HTTP requests and WebSocket sessions from the command line.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"steadyhttp {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
    config_file: Optional[Path] = typer.Option(
        None, "--config", help="Path to a JSON client config file."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~steadyhttp.output.OutputManager` from
    CLI flags and stores shared options in ``ctx.obj``.
    """
    from steadyhttp.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))

    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["verbose"] = verbose


# ------------------------------------------------------------------ #
# Argument parsing helpers
# ------------------------------------------------------------------ #


def _parse_pairs(values: Optional[list[str]], separator: str, label: str) -> dict[str, str]:
    """Turn ``KEY<sep>VALUE`` strings into a dict, exiting on malformed input."""
    from steadyhttp.output import error

    result: dict[str, str] = {}
    for raw in values or []:
        key, sep, value = raw.partition(separator)
        if not sep or not key.strip():
            error(f"Invalid {label} {raw!r}, expected KEY{separator}VALUE")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        result[key.strip()] = value.strip()
    return result


def _parse_body(body: Optional[str]) -> Any:  # noqa: ANN401
    """Parse *body* as JSON if possible, returning the raw string on failure."""
    if body is None:
        return None
    try:
        return json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return body


def _client_config(ctx: typer.Context, timeout: Optional[float] = None, debug: bool = False):
    from steadyhttp.config import resolve_client_config

    obj = ctx.obj or {}
    return resolve_client_config(
        config_file=obj.get("config_file"),
        timeout=timeout,
        debug=True if debug else None,
    )


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


@app.command("request")
def request_command(
    ctx: typer.Context,
    method: str = typer.Argument(help="HTTP method (GET, POST, PUT, PATCH, DELETE)."),
    url: str = typer.Argument(help="Absolute URL, or a path relative to the base URL."),
    header: Optional[list[str]] = typer.Option(
        None, "--header", "-H", help="Request header as KEY:VALUE (repeatable)."
    ),
    param: Optional[list[str]] = typer.Option(
        None, "--param", "-p", help="Query parameter as KEY=VALUE (repeatable)."
    ),
    body: Optional[str] = typer.Option(None, "--body", "-d", help="Request body (JSON or text)."),
    retries: int = typer.Option(0, "--retries", min=0, help="Retries after the first attempt."),
    retry_delay: float = typer.Option(1.0, "--retry-delay", min=0, help="Base retry delay (s)."),
    cache_max_age: float = typer.Option(
        0.0, "--cache-max-age", min=0, help="Cache the response for this many seconds."
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Timeout in seconds."),
    debug: bool = typer.Option(False, "--debug", help="Trace the request pipeline on stderr."),
) -> None:
    """Send one HTTP request and print the response payload.

    Example::

        steadyhttp request GET https://jsonplaceholder.typicode.com/posts/1
        steadyhttp request POST /posts -d '{"title": "hi"}' --retries 2
    """
    from steadyhttp.client import AsyncClient
    from steadyhttp.models import CachePolicy, RequestOptions, RetryPolicy
    from steadyhttp.output import error, format_response

    config = _client_config(ctx, timeout=timeout, debug=debug)
    options = RequestOptions(
        headers=_parse_pairs(header, ":", "header"),
        params=_parse_pairs(param, "=", "parameter"),
        retry=RetryPolicy(max_attempts=retries + 1, delay=retry_delay) if retries else None,
        cache=CachePolicy(max_age=cache_max_age) if cache_max_age > 0 else None,
    )

    async def _run():
        async with AsyncClient(config) as client:
            return await client.request(
                method, url, body=_parse_body(body), options=options
            )

    response = asyncio.run(_run())
    if response.error is not None:
        error(str(response.error))
        raise typer.Exit(code=response.error.exit_code)
    format_response(response.data, response.headers.get("content-type", "application/json"))


@app.command("download")
def download_command(
    ctx: typer.Context,
    url: str = typer.Argument(help="URL to download."),
    path: Path = typer.Argument(help="Destination file."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Timeout in seconds."),
) -> None:
    """Stream a URL to a file.

    Example::

        steadyhttp download https://example.com/report.pdf ./report.pdf
    """
    from steadyhttp.client import AsyncClient
    from steadyhttp.output import debug, info

    config = _client_config(ctx, timeout=timeout)

    def _progress(received: int, total: int) -> None:
        if total > 0:
            debug(f"Downloaded {received}/{total} bytes ({received * 100 // total}%)")

    async def _run() -> Path:
        async with AsyncClient(config) as client:
            return await client.download_file(url, path, on_progress=_progress)

    saved = asyncio.run(_run())
    info(f"Saved {saved.stat().st_size} bytes to {saved}")


@app.command("listen")
def listen_command(
    url: str = typer.Argument(help="WebSocket URL (ws:// or wss://)."),
    token: Optional[str] = typer.Option(None, "--token", help="Bearer token for the handshake."),
    event: Optional[list[str]] = typer.Option(
        None, "--event", "-e", help="Event name to print (repeatable, default 'message')."
    ),
    duration: float = typer.Option(10.0, "--duration", min=0, help="Seconds to listen."),
    debug: bool = typer.Option(False, "--debug", help="Trace the session on stderr."),
) -> None:
    """Open a WebSocket session and print received events.

    Example::

        steadyhttp listen wss://example.com/ws --event chat --duration 30
    """
    from steadyhttp.output import error, format_response, info, warning
    from steadyhttp.socket import ReconnectingSocketSession

    async def _run() -> bool:
        session = ReconnectingSocketSession(url=url, token=token, debug=debug)
        failed = asyncio.Event()

        def _printer(name: str):
            return lambda data: format_response({"event": name, "data": data})

        for name in event or ["message"]:
            session.on(name, _printer(name))
        session.on("connect", lambda _: info(f"Connected to {url}"))
        session.on("disconnect", lambda reason: warning(f"Disconnected: {reason}"))
        session.on("reconnect_failed", lambda _: failed.set())

        await session.connect()
        waiter = asyncio.ensure_future(failed.wait())
        try:
            await asyncio.wait({waiter}, timeout=duration)
        finally:
            waiter.cancel()
            await session.dispose()
        return failed.is_set()

    if asyncio.run(_run()):
        error(f"Could not reconnect to {url}")
        raise typer.Exit(code=EXIT_CONNECTION_ERROR)


@app.command("config")
def config_command(ctx: typer.Context) -> None:
    """Show the effective client configuration.

    Example::

        steadyhttp config
        STEADYHTTP_TIMEOUT=5 steadyhttp --json config
    """
    from steadyhttp.config import get_config_dir
    from steadyhttp.output import format_response, info

    config = _client_config(ctx)
    info(f"Config directory: {get_config_dir()}")
    format_response(config.model_dump(mode="json"))


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def main() -> None:
    """CLI entry point invoked by the ``steadyhttp`` console script.

    Unhandled :class:`~steadyhttp.exceptions.SteadyError` instances cause
    a clean exit with the error's ``exit_code``; any other exception exits
    with the generic failure code.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from steadyhttp.exceptions import SteadyError
        from steadyhttp.output import error

        if isinstance(exc, SteadyError):
            error(str(exc))
            sys.exit(exc.exit_code)
        error(f"Unexpected error: {exc}")
        sys.exit(EXIT_GENERIC_FAILURE)
