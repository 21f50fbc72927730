"""Reconnecting WebSocket session.

Classes:
    :class:`ReconnectingSocketSession` -- event-driven session with
    reconnect backoff, heartbeat and an offline message queue.
    :class:`ConnectionState` -- the session's lifecycle states.
    :class:`AiohttpSocketTransport` -- default transport, built on :mod:`aiohttp`.
"""

from steadyhttp.socket.session import ConnectionState, ReconnectingSocketSession
from steadyhttp.socket.transport import AiohttpSocketTransport, SocketConnection, SocketTransport

__all__ = [
    "AiohttpSocketTransport",
    "ConnectionState",
    "ReconnectingSocketSession",
    "SocketConnection",
    "SocketTransport",
]
