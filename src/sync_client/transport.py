"""Push transports.

``ConnectionManager`` only talks to ``PushTransport``; the WebSocket
implementation is the production one.  Any transport failure surfaces as
``ChannelDisconnected``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlencode

import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from shared.realtime.protocol import ChannelMessage, ClientCommand, ProtocolError
from sync_client.exceptions import ChannelDisconnected

logger = structlog.get_logger(__name__)


class PushTransport(ABC):
    @abstractmethod
    async def connect(self) -> None:
        """Open the connection. Raises ``ChannelDisconnected`` on failure."""

    @abstractmethod
    async def send(self, command: ClientCommand) -> None: ...

    @abstractmethod
    async def receive(self) -> ChannelMessage:
        """Next server message; raises ``ChannelDisconnected`` when the connection drops."""

    @abstractmethod
    async def close(self) -> None: ...


class WebSocketTransport(PushTransport):
    def __init__(self, url: str, access_token: str = "", open_timeout: float = 10.0) -> None:
        self._url = url
        self._access_token = access_token
        self._open_timeout = open_timeout
        self._ws: Optional[ClientConnection] = None

    def _target(self) -> str:
        if not self._access_token:
            return self._url
        separator = "&" if "?" in self._url else "?"
        return f"{self._url}{separator}{urlencode({'token': self._access_token})}"

    async def connect(self) -> None:
        try:
            self._ws = await connect(self._target(), open_timeout=self._open_timeout)
        except (OSError, TimeoutError, InvalidHandshake, InvalidURI) as exc:
            raise ChannelDisconnected(f"Could not connect: {exc}") from exc

    async def send(self, command: ClientCommand) -> None:
        if self._ws is None:
            raise ChannelDisconnected("Not connected.")
        try:
            await self._ws.send(command.to_json())
        except ConnectionClosed as exc:
            raise ChannelDisconnected(str(exc)) from exc

    async def receive(self) -> ChannelMessage:
        if self._ws is None:
            raise ChannelDisconnected("Not connected.")
        while True:
            try:
                raw = await self._ws.recv()
            except ConnectionClosed as exc:
                self._ws = None
                raise ChannelDisconnected(str(exc)) from exc
            try:
                return ChannelMessage.from_json(raw)
            except ProtocolError as exc:
                logger.warning("channel.bad_frame", error=str(exc))

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
