"""WebSocket transport collaborators for the socket session.

:class:`SocketTransport` and :class:`SocketConnection` describe the small
surface the session needs from a WebSocket library: open a connection,
send a text frame, receive the next frame, close.  The default
:class:`AiohttpSocketTransport` implements them on top of
:meth:`aiohttp.ClientSession.ws_connect`; tests plug in in-memory fakes.
"""

from __future__ import annotations

from typing import Mapping, Optional, Protocol, Union

import aiohttp

Frame = Union[str, bytes]


class SocketConnection(Protocol):
    """One open WebSocket connection."""

    async def send(self, text: str) -> None:
        """Send a text frame."""

    async def receive(self) -> Optional[Frame]:
        """Return the next data frame, or ``None`` once the peer closed."""

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection with a WebSocket close code."""


class SocketTransport(Protocol):
    """Factory for :class:`SocketConnection` objects."""

    async def connect(self, url: str, headers: Mapping[str, str]) -> SocketConnection:
        """Perform the handshake against *url* with *headers*."""


class _AiohttpConnection:
    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws

    async def send(self, text: str) -> None:
        await self._ws.send_str(text)

    async def receive(self) -> Optional[Frame]:
        while True:
            message = await self._ws.receive()
            if message.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                return message.data
            if message.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"WebSocket error: {self._ws.exception()}")
            if message.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                return None
            # control frames are answered by aiohttp itself

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._ws.close(code=code, message=reason.encode())


class AiohttpSocketTransport:
    """:class:`SocketTransport` backed by :mod:`aiohttp`.

    Args:
        session: Existing :class:`aiohttp.ClientSession` to reuse.  When
            omitted a session is created lazily and closed by :meth:`aclose`.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def connect(self, url: str, headers: Mapping[str, str]) -> SocketConnection:
        session = await self._get_session()
        ws = await session.ws_connect(url, headers=dict(headers), autoping=True)
        return _AiohttpConnection(ws)

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
