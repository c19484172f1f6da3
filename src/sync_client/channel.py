"""Connection manager for the push channel.

One ``ConnectionManager`` is built at application start and handed to
the view controllers, which register and drop topic interest through
``subscribe``/``unsubscribe``.  The manager:

- joins every topic that has at least one handler, and rejoins them all
  after a reconnect;
- runs the resync listeners after a reconnect, since pushes sent while
  the connection was down are not replayed;
- reconnects with exponential backoff and, once the attempts are used
  up, falls back to calling the resync listeners every ``poll_interval``.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set, Union

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.realtime import protocol
from shared.realtime.protocol import ChannelMessage, ClientCommand
from shared.realtime.topics import topic_owner
from sync_client.exceptions import ChannelDisconnected, ClientError
from sync_client.settings import ClientSettings
from sync_client.transport import PushTransport

logger = structlog.get_logger(__name__)

Handler = Callable[[ChannelMessage], Union[None, Awaitable[None]]]
ResyncListener = Callable[[], Awaitable[None]]

_COMMANDS = {
    "order": (protocol.JOIN_ORDER_ROOM, protocol.LEAVE_ORDER_ROOM),
    "orderList": (protocol.JOIN_ORDERS_LIST_ROOM, protocol.LEAVE_ORDERS_LIST_ROOM),
    "user": (protocol.JOIN_USER_ROOM, protocol.LEAVE_USER_ROOM),
}


def membership_command(topic: str, join: bool) -> ClientCommand:
    kind, _ = topic_owner(topic)
    join_event, leave_event = _COMMANDS[kind]
    args = topic.split(":")[1:]
    return ClientCommand(join_event if join else leave_event, args)


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    PULL = "pull"
    CLOSED = "closed"


@dataclass(frozen=True, eq=False)
class Subscription:
    topic: str
    handler: Handler


class ConnectionManager:
    def __init__(self, transport: PushTransport, settings: ClientSettings) -> None:
        self._transport = transport
        self._settings = settings
        self._handlers: Dict[str, List[Handler]] = {}
        self._resync_listeners: List[ResyncListener] = []
        self._state = ConnectionState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._pending_sends: Set[asyncio.Task] = set()
        self._connected_once = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def topics(self) -> Set[str]:
        return set(self._handlers)

    # ------------------------------------------------------------------
    # Topic interest
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        handlers = self._handlers.setdefault(topic, [])
        if not handlers:
            self._send_soon(membership_command(topic, join=True))
        handlers.append(handler)
        return Subscription(topic, handler)

    def unsubscribe(self, subscription: Subscription) -> None:
        """Fire-and-forget: no acknowledgement is awaited."""
        handlers = self._handlers.get(subscription.topic)
        if not handlers or subscription.handler not in handlers:
            return
        handlers.remove(subscription.handler)
        if not handlers:
            del self._handlers[subscription.topic]
            self._send_soon(membership_command(subscription.topic, join=False))

    def add_resync_listener(self, listener: ResyncListener) -> None:
        self._resync_listeners.append(listener)

    def remove_resync_listener(self, listener: ResyncListener) -> None:
        if listener in self._resync_listeners:
            self._resync_listeners.remove(listener)

    def _send_soon(self, command: ClientCommand) -> None:
        # While disconnected the command is dropped; joins are replayed on connect.
        if self._state is not ConnectionState.CONNECTED:
            return
        task = asyncio.get_running_loop().create_task(self._send_quietly(command))
        self._pending_sends.add(task)
        task.add_done_callback(self._pending_sends.discard)

    async def _send_quietly(self, command: ClientCommand) -> None:
        try:
            await self._transport.send(command)
        except ChannelDisconnected as exc:
            logger.debug("channel.send_dropped", event=command.event, error=str(exc))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        self._state = ConnectionState.CLOSED
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._transport.close()

    async def reconnect(self) -> None:
        """Leave pull mode (or drop the connection) and start over."""
        await self.stop()
        self._state = ConnectionState.IDLE
        self.start()

    async def _run(self) -> None:
        while True:
            try:
                await self._connect()
            except ChannelDisconnected as exc:
                logger.warning(
                    "channel.fallback_to_pull",
                    attempts=self._settings.reconnect_attempts,
                    error=str(exc),
                )
                self._state = ConnectionState.PULL
                await self._poll_forever()
                return
            try:
                while True:
                    message = await self._transport.receive()
                    await self._dispatch(message)
            except ChannelDisconnected as exc:
                logger.info("channel.disconnected", error=str(exc))

    async def _connect(self) -> None:
        self._state = ConnectionState.CONNECTING
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.reconnect_attempts),
            wait=wait_exponential(
                multiplier=self._settings.reconnect_base_delay,
                max=self._settings.reconnect_max_delay,
            ),
            retry=retry_if_exception_type(ChannelDisconnected),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                await self._transport.connect()
                for topic in list(self._handlers):
                    await self._transport.send(membership_command(topic, join=True))

        reconnected = self._connected_once
        self._connected_once = True
        self._state = ConnectionState.CONNECTED
        logger.info("channel.connected", topics=len(self._handlers), reconnected=reconnected)
        if reconnected:
            await self.resync()

    async def _dispatch(self, message: ChannelMessage) -> None:
        if message.event == protocol.ERROR:
            logger.warning("channel.server_error", topic=message.topic, data=message.data)
            return
        for handler in list(self._handlers.get(message.topic, ())):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except ClientError as exc:
                logger.warning("channel.handler_failed", topic=message.topic, error=str(exc))
            except Exception:
                logger.exception("channel.handler_crashed", topic=message.topic)

    async def resync(self) -> None:
        """Authoritative re-fetch by every mounted view."""
        for listener in list(self._resync_listeners):
            try:
                await listener()
            except ClientError as exc:
                logger.warning("channel.resync_failed", error=str(exc))
            except Exception:
                logger.exception("channel.resync_crashed")

    async def _poll_forever(self) -> None:
        while True:
            await self.resync()
            await asyncio.sleep(self._settings.poll_interval)
