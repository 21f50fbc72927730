"""Tests for the Typer CLI surface."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest
from typer.testing import CliRunner

import steadyhttp.client
import steadyhttp.socket
from steadyhttp import __version__
from steadyhttp.app import app
from steadyhttp.client import AsyncClient
from steadyhttp.socket import ReconnectingSocketSession

runner = CliRunner()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def requests_seen(monkeypatch: pytest.MonkeyPatch, isolated_config: Path) -> list[httpx.Request]:
    """Route every CLI-built client through a MockTransport with canned answers."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/missing":
            return httpx.Response(404, json={"detail": "missing"})
        if request.url.path == "/broken":
            return httpx.Response(503, json={"detail": "down"})
        if request.url.path == "/file":
            return httpx.Response(200, content=b"0123456789")
        return httpx.Response(200, json={"path": request.url.path, "method": request.method})

    def _factory(config: Any = None, **kwargs: Any) -> AsyncClient:
        return AsyncClient(config, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(steadyhttp.client, "AsyncClient", _factory)
    return seen


class _RefusingTransport:
    async def connect(self, url: str, headers: Any) -> Any:
        raise ConnectionError("refused")


# ---------------------------------------------------------------------------
# Root options
# ---------------------------------------------------------------------------


class TestRoot:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"steadyhttp {__version__}" in result.output

    def test_help_lists_commands(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("request", "download", "listen", "config"):
            assert command in result.output


# ---------------------------------------------------------------------------
# request
# ---------------------------------------------------------------------------


class TestRequestCommand:
    def test_get_prints_json(self, requests_seen: list[httpx.Request]) -> None:
        result = runner.invoke(app, ["--json", "-q", "request", "GET", "https://api.example.com/users"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"path": "/users", "method": "GET"}

    def test_headers_params_and_body(self, requests_seen: list[httpx.Request]) -> None:
        result = runner.invoke(
            app,
            [
                "--json", "-q", "request", "POST", "https://api.example.com/items",
                "-H", "X-Key: abc", "-p", "page=2", "-d", '{"name": "x"}',
            ],
        )
        assert result.exit_code == 0, result.output
        sent = requests_seen[0]
        assert sent.headers["x-key"] == "abc"
        assert sent.url.params["page"] == "2"
        assert json.loads(sent.content) == {"name": "x"}

    def test_relative_path_uses_env_base_url(
        self, requests_seen: list[httpx.Request], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("STEADYHTTP_BASE_URL", "https://env.example.com")
        result = runner.invoke(app, ["--json", "-q", "request", "GET", "/users"])
        assert result.exit_code == 0, result.output
        assert requests_seen[0].url.host == "env.example.com"

    def test_malformed_header_is_usage_error(self, requests_seen: list[httpx.Request]) -> None:
        result = runner.invoke(app, ["request", "GET", "https://api.example.com/", "-H", "nocolon"])
        assert result.exit_code == 2
        assert requests_seen == []

    def test_client_error_exit_code(self, requests_seen: list[httpx.Request]) -> None:
        result = runner.invoke(app, ["request", "GET", "https://api.example.com/missing"])
        assert result.exit_code == 4
        assert "HTTP 404" in result.output

    def test_retries_then_server_error_exit_code(self, requests_seen: list[httpx.Request]) -> None:
        result = runner.invoke(
            app,
            ["request", "GET", "https://api.example.com/broken", "--retries", "2", "--retry-delay", "0"],
        )
        assert result.exit_code == 5
        assert len(requests_seen) == 3


# ---------------------------------------------------------------------------
# download / listen / config
# ---------------------------------------------------------------------------


class TestOtherCommands:
    def test_download(self, requests_seen: list[httpx.Request], isolated_config: Path) -> None:
        target = isolated_config / "out.bin"
        result = runner.invoke(app, ["download", "https://api.example.com/file", str(target)])
        assert result.exit_code == 0, result.output
        assert target.read_bytes() == b"0123456789"
        assert "Saved 10 bytes" in result.output

    def test_verbose_download_reports_progress(
        self, requests_seen: list[httpx.Request], isolated_config: Path
    ) -> None:
        target = isolated_config / "out.bin"
        result = runner.invoke(
            app, ["--no-color", "-v", "download", "https://api.example.com/file", str(target)]
        )
        assert result.exit_code == 0, result.output
        assert "[debug] Downloaded 10/10 bytes (100%)" in result.output

    def test_download_failure_exit_code(
        self, requests_seen: list[httpx.Request], isolated_config: Path
    ) -> None:
        target = isolated_config / "out.bin"
        result = runner.invoke(app, ["download", "https://api.example.com/missing", str(target)])
        assert result.exit_code != 0
        assert not target.exists()

    def test_listen_gives_up_with_connection_exit_code(
        self, monkeypatch: pytest.MonkeyPatch, isolated_config: Path
    ) -> None:
        def _factory(**fields: Any) -> ReconnectingSocketSession:
            return ReconnectingSocketSession(
                transport=_RefusingTransport(),
                reconnect_base_delay=0.0,
                reconnect_max_delay=0.0,
                max_reconnect_attempts=1,
                **fields,
            )

        monkeypatch.setattr(steadyhttp.socket, "ReconnectingSocketSession", _factory)
        result = runner.invoke(app, ["listen", "wss://example.com/ws", "--duration", "5"])
        assert result.exit_code == 6
        assert "Could not reconnect" in result.output
        assert "Disconnected: refused" in result.output

    def test_config_shows_effective_values(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("STEADYHTTP_TIMEOUT", "5")
        result = runner.invoke(app, ["--json", "-q", "config"])
        assert result.exit_code == 0, result.output
        shown = json.loads(result.output)
        assert shown["timeout"] == 5.0
        assert "on_error" not in shown

    def test_config_bad_env(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STEADYHTTP_TIMEOUT", "soon")
        result = runner.invoke(app, ["config"])
        assert result.exit_code != 0
