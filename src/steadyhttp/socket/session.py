"""Long-lived WebSocket session with reconnection, heartbeat and offline queue.

:class:`ReconnectingSocketSession` keeps one logical connection alive:

* **Reconnect** -- an unexpected drop schedules a new connection attempt
  after ``base * 2**k`` seconds; the last configured attempt waits the
  full ceiling.  When every attempt fails the session settles in
  ``disconnected`` and emits ``reconnect_failed`` once.
* **Heartbeat** -- every ``heartbeat_interval`` a ``{"event": "ping"}``
  frame is sent; a missing ``pong`` for longer than ``heartbeat_timeout``
  counts as a dead connection.
* **Queue** -- :meth:`emit` while offline (or a failed send) queues the
  message; the queue is flushed in order right after the next successful
  connect, and new messages never overtake queued ones.
* **Events** -- inbound ``{"event": ..., "data": ...}`` frames are
  dispatched to handlers registered with :meth:`on`; anything else goes to
  the ``message`` event.  The session also emits local events:
  ``connect``, ``disconnect``, ``state_change``, ``reconnect_failed`` and
  ``close``.

Example::

    session = ReconnectingSocketSession(url="wss://example.com/ws", token="t0k3n")
    session.on("chat", lambda data: print(data))
    await session.connect()
    await session.join("lobby")
    await session.emit("chat", {"message": "hi"})
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import json
import time
from collections import deque
from typing import Any, Callable, Optional

import httpx

from steadyhttp.exceptions import DisposedError
from steadyhttp.models import SocketConfig
from steadyhttp.output import get_output
from steadyhttp.socket.transport import AiohttpSocketTransport, Frame, SocketConnection, SocketTransport

Handler = Callable[[Any], Any]

NORMAL_CLOSURE = 1000
GOING_AWAY = 1001


class ConnectionState(str, enum.Enum):
    """Lifecycle state of a :class:`ReconnectingSocketSession`."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ReconnectingSocketSession:
    """Event-driven WebSocket client that survives dropped connections.

    Args:
        config: Session settings.  When omitted, *config_fields* are used to
            build a :class:`SocketConfig` (``url`` is then required).
        transport: Connection factory; defaults to
            :class:`AiohttpSocketTransport`.
        **config_fields: :class:`SocketConfig` fields, applied on top of
            *config* when both are given.
    """

    def __init__(
        self,
        config: Optional[SocketConfig] = None,
        *,
        transport: Optional[SocketTransport] = None,
        **config_fields: Any,
    ) -> None:
        if config is None:
            config = SocketConfig(**config_fields)
        elif config_fields:
            config = config.model_copy(update=config_fields)
        self._config = config
        self._transport: SocketTransport = transport or AiohttpSocketTransport()
        self._owns_transport = transport is None

        self._connection: Optional[SocketConnection] = None
        self._state = ConnectionState.DISCONNECTED
        self._handlers: dict[str, list[Handler]] = {}
        self._queue: deque[dict[str, Any]] = deque()
        self._reconnect_attempts = 0
        self._reconnecting = False
        self._flushing = False
        self._last_pong: Optional[float] = None
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        self._disposed = False

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> SocketConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def queued_message_count(self) -> int:
        return len(self._queue)

    @property
    def reconnect_attempt(self) -> int:
        """Number of reconnect attempts made since the last successful connect."""
        return self._reconnect_attempts

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before reconnect *attempt* (0-based)."""
        ceiling = self._config.reconnect_max_delay
        if attempt >= self._config.max_reconnect_attempts - 1:
            return ceiling
        return min(self._config.reconnect_base_delay * (2**attempt), ceiling)

    # ------------------------------------------------------------------ #
    # Connection lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        """Open the connection.

        Does nothing while already connecting or connected.  A failed
        handshake is handled like a drop and triggers the reconnect
        schedule; it is not raised.

        Raises:
            DisposedError: The session was disposed.
        """
        self._ensure_not_disposed()
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            self._log("Already connected or connecting")
            return

        await self._set_state(ConnectionState.CONNECTING)
        url = self._build_url()
        self._log(f"Connecting to {url}")
        try:
            connection = await self._transport.connect(url, self._build_headers())
        except Exception as exc:
            await self._handle_disconnect(exc)
            return

        if self._state != ConnectionState.CONNECTING:
            # closed while the handshake was in flight
            await self._close_quietly(connection, NORMAL_CLOSURE, "")
            return

        self._connection = connection
        self._reconnect_attempts = 0
        self._last_pong = time.monotonic()
        # emits issued from state_change handlers line up behind the queue
        self._flushing = True
        try:
            await self._set_state(ConnectionState.CONNECTED)
            self._log(f"Connected to {url}")
            await self._drain_queue()
        finally:
            self._flushing = False
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        await self._dispatch("connect")
        self._reader_task = asyncio.create_task(self._read_loop(connection))

    async def reconnect(self) -> None:
        """Start over with a fresh reconnect budget."""
        self._log("Manual reconnection triggered")
        self._cancel(self._reconnect_task)
        self._reconnect_task = None
        self._reconnect_attempts = 0
        self._reconnecting = False
        await self.connect()

    async def close(self, code: int = NORMAL_CLOSURE, reason: Optional[str] = None) -> None:
        """Close the connection and stop reconnecting.

        Drops queued messages, emits ``close`` with *reason* and then
        removes every handler.
        """
        self._log("Closing connection")
        self._reconnecting = False
        await self._set_state(ConnectionState.DISCONNECTED)
        self._stop_background_tasks(include_reconnect=True)
        self._queue.clear()

        connection, self._connection = self._connection, None
        if connection is not None:
            await self._close_quietly(connection, code, reason or "")

        await self._dispatch("close", reason)
        self._handlers.clear()

    async def dispose(self) -> None:
        """Close for good; later :meth:`connect` and :meth:`emit` raise."""
        if self._disposed:
            return
        await self.close(GOING_AWAY, "Client disposed")
        self._disposed = True
        if self._owns_transport and isinstance(self._transport, AiohttpSocketTransport):
            await self._transport.aclose()

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #

    def on(self, event: str, handler: Handler) -> Handler:
        """Register *handler* for *event*; it receives the event data."""
        self._handlers.setdefault(event, []).append(handler)
        return handler

    def off(self, event: str, handler: Optional[Handler] = None) -> None:
        """Remove *handler*, or every handler of *event* when omitted."""
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def once(self, event: str, handler: Handler) -> Handler:
        """Register *handler* for the next *event* only."""

        def _once(data: Any = None) -> Any:
            self.off(event, _once)
            return handler(data)

        return self.on(event, _once)

    async def emit(self, event: str, data: Any = None) -> None:
        """Send ``{"event": event, "data": data}`` or queue it while offline.

        Raises:
            DisposedError: The session was disposed.
            TypeError: *data* is not JSON serialisable.
        """
        self._ensure_not_disposed()
        payload = {"event": event, "data": data}
        json.dumps(payload)
        self._queue.append(payload)
        if self._connection is None or not self.is_connected:
            self._log(f"Queued (offline): {event}")
            return
        if self._flushing:
            self._log(f"Queued behind flush: {event}")
            return
        await self._flush_queue()

    async def join(self, room: str) -> None:
        await self.emit("join", {"room": room})

    async def leave(self, room: str) -> None:
        await self.emit("leave", {"room": room})

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _ensure_not_disposed(self) -> None:
        if self._disposed:
            raise DisposedError("Socket session has been disposed", url=self._config.url)

    def _build_url(self) -> str:
        if not self._config.params:
            return self._config.url
        params = {key: str(value) for key, value in self._config.params.items()}
        return str(httpx.URL(self._config.url).copy_merge_params(params))

    def _build_headers(self) -> dict[str, str]:
        headers = dict(self._config.headers)
        has_auth = any(key.lower() == "authorization" for key in headers)
        if self._config.token is not None and not has_auth:
            headers["Authorization"] = f"Bearer {self._config.token}"
        return headers

    async def _set_state(self, state: ConnectionState) -> None:
        if self._state == state:
            return
        self._state = state
        self._log(f"State changed: {state.value}")
        await self._dispatch("state_change", state)

    async def _dispatch(self, event: str, data: Any = None) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                get_output().warning(
                    f"Socket handler for {event!r} raised {type(exc).__name__}: {exc}"
                )

    async def _flush_queue(self) -> None:
        if self._flushing:
            return
        self._flushing = True
        try:
            await self._drain_queue()
        finally:
            self._flushing = False

    async def _drain_queue(self) -> None:
        """Send queued messages oldest first; a failed send stays queued."""
        if len(self._queue) > 1:
            self._log(f"Flushing {len(self._queue)} queued messages")
        while self._queue and self._connection is not None and self.is_connected:
            encoded = json.dumps(self._queue[0])
            try:
                await self._connection.send(encoded)
            except Exception as exc:
                self._log(f"Send failed, message stays queued: {exc}")
                break
            self._queue.popleft()
            self._log(f"Emit: {encoded}")

    async def _handle_frame(self, frame: Frame) -> None:
        try:
            decoded = json.loads(frame)
        except (TypeError, ValueError):
            await self._dispatch("message", frame)
            return

        if not isinstance(decoded, dict):
            await self._dispatch("message", decoded)
            return
        event = decoded.get("event")
        if event == "pong":
            self._last_pong = time.monotonic()
            self._log("Pong received")
            return
        if not isinstance(event, str):
            await self._dispatch("message", decoded)
            return
        await self._dispatch(event, decoded.get("data"))

    async def _read_loop(self, connection: SocketConnection) -> None:
        try:
            while True:
                frame = await connection.receive()
                if frame is None:
                    break
                await self._handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if connection is self._connection:
                await self._handle_disconnect(exc)
            return
        if connection is self._connection:
            await self._handle_disconnect("Connection closed")

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.heartbeat_interval)
            connection = self._connection
            if connection is None or not self.is_connected:
                return
            if (
                self._last_pong is not None
                and time.monotonic() - self._last_pong > self._config.heartbeat_timeout
            ):
                self._log("No pong response, assuming dead connection")
                await self._handle_disconnect("Heartbeat timeout")
                return
            try:
                await connection.send(json.dumps({"event": "ping"}))
            except Exception as exc:
                self._log(f"Heartbeat failed: {exc}")
                await self._handle_disconnect("Heartbeat failed")
                return
            self._log("Ping sent")

    async def _handle_disconnect(self, error: Any = None) -> None:
        if self._reconnecting or self._state == ConnectionState.DISCONNECTED:
            return
        self._reconnecting = True
        self._stop_background_tasks(include_reconnect=False)
        await self._set_state(ConnectionState.RECONNECTING)
        connection, self._connection = self._connection, None
        if connection is not None:
            await self._close_quietly(connection, GOING_AWAY, "")

        self._log(f"Disconnected: {error}")
        await self._dispatch("disconnect", error)

        maximum = self._config.max_reconnect_attempts
        if self._reconnect_attempts < maximum:
            delay = self.backoff_delay(self._reconnect_attempts)
            self._reconnect_attempts += 1
            self._log(
                f"Reconnecting in {delay:g}s (attempt {self._reconnect_attempts}/{maximum})"
            )
            self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))
        else:
            self._log("Max reconnect attempts reached")
            self._reconnecting = False
            await self._set_state(ConnectionState.DISCONNECTED)
            await self._dispatch("reconnect_failed")

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnecting = False
        if self._state != ConnectionState.RECONNECTING or self._disposed:
            return
        await self.connect()

    def _stop_background_tasks(self, include_reconnect: bool) -> None:
        self._cancel(self._heartbeat_task)
        self._heartbeat_task = None
        self._cancel(self._reader_task)
        self._reader_task = None
        if include_reconnect:
            self._cancel(self._reconnect_task)
            self._reconnect_task = None

    @staticmethod
    def _cancel(task: Optional[asyncio.Task[None]]) -> None:
        # a loop may tear itself down from the inside
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _close_quietly(self, connection: SocketConnection, code: int, reason: str) -> None:
        try:
            await connection.close(code, reason)
        except Exception as exc:
            self._log(f"Error during close: {exc}")

    def _log(self, message: str) -> None:
        if self._config.debug:
            get_output().trace("steadyhttp.socket", message)
