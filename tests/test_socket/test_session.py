"""Tests for the reconnecting WebSocket session."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Optional

import pytest

from steadyhttp.exceptions import DisposedError
from steadyhttp.models import SocketConfig
from steadyhttp.output import OutputManager, reset_output, set_output
from steadyhttp.socket import ConnectionState, ReconnectingSocketSession

WS_URL = "wss://example.com/ws"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class _FakeConnection:
    """In-memory connection: tests push inbound frames, outbound ones are recorded."""

    def __init__(self, gate: Optional[asyncio.Event] = None) -> None:
        self.sent: list[str] = []
        self.inbound: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self.closed_with: Optional[tuple[int, str]] = None
        self.fail_sends = False
        self.gate = gate

    async def send(self, data: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_sends:
            raise ConnectionError("send failed")
        self.sent.append(data)

    async def receive(self) -> Optional[str]:
        return await self.inbound.get()

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)
        self.inbound.put_nowait(None)

    def push(self, frame: Any) -> None:
        self.inbound.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    @property
    def events(self) -> list[Any]:
        return [json.loads(frame) for frame in self.sent]


class _FakeTransport:
    """Hands out fake connections; ``fail`` makes every handshake fail.

    With a *gate*, sends block until the event is set.
    """

    def __init__(self, fail: bool = False, gate: Optional[asyncio.Event] = None) -> None:
        self.fail = fail
        self.gate = gate
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.connections: list[_FakeConnection] = []

    async def connect(self, url: str, headers: dict[str, str]) -> _FakeConnection:
        self.calls.append((url, headers))
        if self.fail:
            raise ConnectionError("handshake refused")
        connection = _FakeConnection(self.gate)
        self.connections.append(connection)
        return connection

    @property
    def last(self) -> _FakeConnection:
        return self.connections[-1]


def _session(transport: _FakeTransport, **fields: Any) -> ReconnectingSocketSession:
    fields.setdefault("url", WS_URL)
    fields.setdefault("reconnect_base_delay", 0.0)
    fields.setdefault("reconnect_max_delay", 0.0)
    return ReconnectingSocketSession(transport=transport, **fields)


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture(autouse=True)
def _clean_output():
    """Reset the global output manager between tests."""
    set_output(OutputManager(no_color=True, quiet=True))
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Connecting
# ---------------------------------------------------------------------------


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_sets_state_and_fires_event(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        states: list[ConnectionState] = []
        connected: list[Any] = []
        session.on("state_change", states.append)
        session.on("connect", connected.append)

        await session.connect()

        assert session.is_connected
        assert session.state == ConnectionState.CONNECTED
        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        assert connected == [None]
        await session.dispose()

    @pytest.mark.asyncio
    async def test_bearer_token_and_params(self) -> None:
        transport = _FakeTransport()
        session = _session(transport, token="t0k3n", params={"room": "lobby"}, headers={"X-App": "1"})
        await session.connect()

        url, headers = transport.calls[0]
        assert url == f"{WS_URL}?room=lobby"
        assert headers == {"X-App": "1", "Authorization": "Bearer t0k3n"}
        await session.dispose()

    @pytest.mark.asyncio
    async def test_explicit_authorization_header_kept(self) -> None:
        transport = _FakeTransport()
        session = _session(transport, token="t0k3n", headers={"authorization": "Basic abc"})
        await session.connect()

        _, headers = transport.calls[0]
        assert headers == {"authorization": "Basic abc"}
        await session.dispose()

    @pytest.mark.asyncio
    async def test_second_connect_is_noop(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        await session.connect()
        await session.connect()
        assert len(transport.calls) == 1
        await session.dispose()

    @pytest.mark.asyncio
    async def test_config_object_with_field_overrides(self) -> None:
        config = SocketConfig(url="wss://ignored.example.com", debug=False)
        session = ReconnectingSocketSession(config, transport=_FakeTransport(), url=WS_URL)
        assert session.config.url == WS_URL

    def test_backoff_schedule(self) -> None:
        session = ReconnectingSocketSession(url=WS_URL, transport=_FakeTransport())
        assert [session.backoff_delay(k) for k in range(5)] == [3.0, 6.0, 12.0, 24.0, 30.0]


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------


class TestEmit:
    @pytest.mark.asyncio
    async def test_emit_while_connected(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        await session.connect()

        await session.emit("chat", {"message": "hi"})
        await session.join("lobby")
        await session.leave("lobby")

        assert transport.last.events == [
            {"event": "chat", "data": {"message": "hi"}},
            {"event": "join", "data": {"room": "lobby"}},
            {"event": "leave", "data": {"room": "lobby"}},
        ]
        assert session.queued_message_count == 0
        await session.dispose()

    @pytest.mark.asyncio
    async def test_offline_messages_flushed_in_order_before_connect_event(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        await session.emit("first", 1)
        await session.emit("second", 2)
        assert session.queued_message_count == 2

        sent_at_connect: list[int] = []
        session.on("connect", lambda _: sent_at_connect.append(len(transport.last.sent)))
        await session.connect()

        assert [e["event"] for e in transport.last.events] == ["first", "second"]
        assert sent_at_connect == [2]
        assert session.queued_message_count == 0
        await session.dispose()

    @pytest.mark.asyncio
    async def test_emit_from_state_change_handler_goes_after_queue(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        for name in ("q1", "q2", "q3"):
            await session.emit(name)

        async def on_state(state: ConnectionState) -> None:
            if state == ConnectionState.CONNECTED:
                await session.emit("fresh")

        session.on("state_change", on_state)
        await session.connect()

        assert [e["event"] for e in transport.last.events] == ["q1", "q2", "q3", "fresh"]
        assert session.queued_message_count == 0
        await session.dispose()

    @pytest.mark.asyncio
    async def test_emit_during_flush_waits_for_queued_messages(self) -> None:
        gate = asyncio.Event()
        transport = _FakeTransport(gate=gate)
        session = _session(transport)
        await session.emit("q1")
        await session.emit("q2")

        connecting = asyncio.create_task(session.connect())
        await _wait_until(lambda: session.is_connected)
        await session.emit("fresh")
        assert session.queued_message_count == 3
        assert transport.last.sent == []

        gate.set()
        await connecting
        await session.emit("later")

        assert [e["event"] for e in transport.last.events] == ["q1", "q2", "fresh", "later"]
        assert session.queued_message_count == 0
        await session.dispose()

    @pytest.mark.asyncio
    async def test_queued_failure_is_sent_before_next_emit(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        await session.connect()
        transport.last.fail_sends = True
        await session.emit("first")

        transport.last.fail_sends = False
        await session.emit("second")

        assert [e["event"] for e in transport.last.events] == ["first", "second"]
        await session.dispose()

    @pytest.mark.asyncio
    async def test_failed_send_is_queued(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        await session.connect()
        transport.last.fail_sends = True

        await session.emit("chat", "lost?")
        assert session.queued_message_count == 1
        await session.dispose()

    @pytest.mark.asyncio
    async def test_unserialisable_data_raises(self) -> None:
        session = _session(_FakeTransport())
        with pytest.raises(TypeError):
            await session.emit("chat", object())
        assert session.queued_message_count == 0


# ---------------------------------------------------------------------------
# Receiving
# ---------------------------------------------------------------------------


class TestReceive:
    @pytest.mark.asyncio
    async def test_named_event_routed_to_handler(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        received: list[Any] = []
        session.on("chat", received.append)
        await session.connect()

        transport.last.push({"event": "chat", "data": {"text": "hello"}})
        await _wait_until(lambda: len(received) == 1)
        assert received == [{"text": "hello"}]
        await session.dispose()

    @pytest.mark.asyncio
    async def test_other_frames_go_to_message(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        messages: list[Any] = []
        session.on("message", messages.append)
        await session.connect()

        transport.last.push("plain text")
        transport.last.push([1, 2])
        transport.last.push({"data": "no event"})
        await _wait_until(lambda: len(messages) == 3)
        assert messages == ["plain text", [1, 2], {"data": "no event"}]
        await session.dispose()

    @pytest.mark.asyncio
    async def test_pong_is_not_dispatched(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        pongs: list[Any] = []
        seen: list[Any] = []
        session.on("pong", pongs.append)
        session.on("chat", seen.append)
        await session.connect()

        transport.last.push({"event": "pong"})
        transport.last.push({"event": "chat", "data": 1})
        await _wait_until(lambda: seen == [1])
        assert pongs == []
        await session.dispose()

    @pytest.mark.asyncio
    async def test_once_and_off(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        first: list[Any] = []
        always: list[Any] = []
        removed: list[Any] = []
        session.once("chat", first.append)
        session.on("chat", always.append)
        session.on("chat", removed.append)
        session.off("chat", removed.append)
        await session.connect()

        transport.last.push({"event": "chat", "data": "a"})
        transport.last.push({"event": "chat", "data": "b"})
        await _wait_until(lambda: len(always) == 2)
        assert first == ["a"]
        assert always == ["a", "b"]
        assert removed == []
        await session.dispose()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        received: list[Any] = []

        def broken(data: Any) -> None:
            raise RuntimeError("handler bug")

        async def async_handler(data: Any) -> None:
            received.append(data)

        session.on("chat", broken)
        session.on("chat", async_handler)
        await session.connect()

        transport.last.push({"event": "chat", "data": "x"})
        await _wait_until(lambda: received == ["x"])
        assert session.is_connected
        await session.dispose()


# ---------------------------------------------------------------------------
# Reconnection and heartbeat
# ---------------------------------------------------------------------------


class TestReconnect:
    @pytest.mark.asyncio
    async def test_gives_up_after_configured_attempts(self) -> None:
        transport = _FakeTransport(fail=True)
        session = _session(transport, max_reconnect_attempts=2)
        failed: list[Any] = []
        disconnects: list[Any] = []
        session.on("reconnect_failed", failed.append)
        session.on("disconnect", disconnects.append)

        await session.connect()
        await _wait_until(lambda: len(failed) == 1)
        await asyncio.sleep(0.05)

        assert len(transport.calls) == 3
        assert len(failed) == 1
        assert len(disconnects) == 3
        assert session.state == ConnectionState.DISCONNECTED
        await session.dispose()

    @pytest.mark.asyncio
    async def test_recovers_after_server_close(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        reasons: list[Any] = []
        connects: list[Any] = []
        session.on("disconnect", reasons.append)
        session.on("connect", connects.append)
        await session.connect()

        transport.last.inbound.put_nowait(None)
        await _wait_until(lambda: len(connects) == 2)

        assert reasons == ["Connection closed"]
        assert len(transport.connections) == 2
        assert session.is_connected
        assert session.reconnect_attempt == 0
        await session.dispose()

    @pytest.mark.asyncio
    async def test_heartbeat_stopped_before_reconnecting_state(self) -> None:
        transport = _FakeTransport()
        session = _session(transport, max_reconnect_attempts=0)
        heartbeat_running: list[bool] = []

        def on_state(state: ConnectionState) -> None:
            if state == ConnectionState.RECONNECTING:
                heartbeat_running.append(session._heartbeat_task is not None)

        session.on("state_change", on_state)
        await session.connect()
        assert session._heartbeat_task is not None

        transport.last.inbound.put_nowait(None)
        await _wait_until(lambda: session.state == ConnectionState.DISCONNECTED)

        assert heartbeat_running == [False]
        await session.dispose()

    @pytest.mark.asyncio
    async def test_manual_reconnect_resets_budget(self) -> None:
        transport = _FakeTransport(fail=True)
        session = _session(transport, max_reconnect_attempts=0)
        failed: list[Any] = []
        session.on("reconnect_failed", failed.append)
        await session.connect()
        assert failed == [None]

        transport.fail = False
        await session.reconnect()
        assert session.is_connected
        await session.dispose()

    @pytest.mark.asyncio
    async def test_heartbeat_sends_ping(self) -> None:
        transport = _FakeTransport()
        session = _session(transport, heartbeat_interval=0.01, heartbeat_timeout=60)
        await session.connect()

        await _wait_until(lambda: {"event": "ping"} in transport.last.events)
        await session.dispose()

    @pytest.mark.asyncio
    async def test_missing_pong_drops_connection(self) -> None:
        transport = _FakeTransport()
        session = _session(
            transport, heartbeat_interval=0.01, heartbeat_timeout=0.02, max_reconnect_attempts=0
        )
        reasons: list[Any] = []
        session.on("disconnect", reasons.append)
        await session.connect()

        await _wait_until(lambda: reasons == ["Heartbeat timeout"])
        assert transport.connections[0].closed_with == (1001, "")
        await session.dispose()


# ---------------------------------------------------------------------------
# Close / dispose
# ---------------------------------------------------------------------------


class TestClose:
    @pytest.mark.asyncio
    async def test_close_emits_reason_then_clears_handlers(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        closed: list[Any] = []
        session.on("close", closed.append)
        await session.connect()

        await session.close(reason="bye")

        assert closed == ["bye"]
        assert transport.last.closed_with == (1000, "bye")
        assert session.state == ConnectionState.DISCONNECTED

        await session.connect()
        transport.last.push({"event": "close", "data": "again"})
        await asyncio.sleep(0.02)
        assert closed == ["bye"]
        await session.dispose()

    @pytest.mark.asyncio
    async def test_close_drops_queue(self) -> None:
        session = _session(_FakeTransport())
        await session.emit("chat", 1)
        await session.close()
        assert session.queued_message_count == 0

    @pytest.mark.asyncio
    async def test_dispose(self) -> None:
        transport = _FakeTransport()
        session = _session(transport)
        await session.connect()

        await session.dispose()
        await session.dispose()

        assert session.is_disposed
        assert transport.last.closed_with == (1001, "Client disposed")
        with pytest.raises(DisposedError):
            await session.emit("chat", 1)
        with pytest.raises(DisposedError):
            await session.connect()
