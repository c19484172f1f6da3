"""WebSocket push gateway.

Runs as its own process (``manage.py run_realtime_gateway``): subscribes
to the broadcaster's Redis channel and fans each message out to the
connections that joined its topic.  Membership commands never touch
order state.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Optional
from urllib.parse import parse_qs, urlsplit

import redis.asyncio as aioredis
import structlog
from asgiref.sync import sync_to_async
from django.core.exceptions import ValidationError
from django.db.models import Q
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken
from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from modules.realtime.hub import CLOSE_SENTINEL, Subscriber, TopicHub
from shared.realtime import protocol
from shared.realtime.protocol import ChannelMessage, ClientCommand, ProtocolError
from shared.realtime.topics import (
    InvalidTopic,
    order_list_topic,
    order_topic,
    topic_owner,
    user_topic,
)

logger = structlog.get_logger(__name__)

CLOSE_UNAUTHORIZED = 4401
CLOSE_TRY_AGAIN = 1013

_JOIN = {
    protocol.JOIN_ORDER_ROOM,
    protocol.JOIN_ORDERS_LIST_ROOM,
    protocol.JOIN_USER_ROOM,
}


def topic_for(command: ClientCommand) -> str:
    """Map a membership command to its topic.

    Raises:
        ProtocolError: unknown command or missing arguments.
        InvalidTopic: arguments do not form a valid topic.
    """
    args = command.args
    if command.event in (protocol.JOIN_ORDER_ROOM, protocol.LEAVE_ORDER_ROOM) and len(args) >= 1:
        return order_topic(args[0])
    if command.event in (protocol.JOIN_ORDERS_LIST_ROOM, protocol.LEAVE_ORDERS_LIST_ROOM) and len(args) >= 2:
        return order_list_topic(args[0], str(args[1]))
    if command.event in (protocol.JOIN_USER_ROOM, protocol.LEAVE_USER_ROOM) and len(args) >= 1:
        return user_topic(args[0])
    raise ProtocolError(f"Unsupported command {command.event!r} with args {args!r}.")


class TokenAuthorizer:
    """Checks the connection's JWT and who may join which topic."""

    def authenticate(self, path: str, authorization: Optional[str]) -> Optional[str]:
        """Return the user id carried by the access token, or ``None``."""
        raw = parse_qs(urlsplit(path).query).get("token", [None])[0]
        if raw is None and authorization and authorization.lower().startswith("bearer "):
            raw = authorization.split(" ", 1)[1]
        if not raw:
            return None
        try:
            token = AccessToken(raw)
        except TokenError as exc:
            logger.info("realtime.token_rejected", error=str(exc))
            return None
        return str(token["user_id"])

    async def can_join(self, user_id: str, topic: str) -> bool:
        kind, subject = topic_owner(topic)
        if kind in ("orderList", "user"):
            return subject == user_id
        if kind == "order":
            return await sync_to_async(self._is_participant)(subject, user_id)
        return False

    @staticmethod
    def _is_participant(order_id: str, user_id: str) -> bool:
        from modules.orders.models import Order

        try:
            return (
                Order.objects.filter(id=order_id)
                .filter(Q(buyer_id=user_id) | Q(seller_id=user_id))
                .exists()
            )
        except (ValueError, ValidationError):
            return False


class RealtimeGateway:
    def __init__(
        self,
        hub: TopicHub,
        queue_size: int,
        authorizer: Optional[TokenAuthorizer] = None,
    ) -> None:
        self.hub = hub
        self._queue_size = queue_size
        self._authorizer = authorizer

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def handler(self, websocket: ServerConnection) -> None:
        user_id: Optional[str] = None
        if self._authorizer is not None:
            user_id = self._authorizer.authenticate(
                websocket.request.path,
                websocket.request.headers.get("Authorization"),
            )
            if user_id is None:
                await websocket.close(CLOSE_UNAUTHORIZED, "authentication required")
                return

        subscriber = Subscriber(uuid.uuid4().hex, user_id, self._queue_size)
        self.hub.register(subscriber)
        log = logger.bind(subscriber_id=subscriber.id, user_id=user_id)
        log.info("realtime.connected", connections=self.hub.connection_count)
        drain = asyncio.create_task(self._drain(websocket, subscriber))
        try:
            async for raw in websocket:
                await self._on_frame(websocket, subscriber, raw)
        except ConnectionClosed:
            pass
        finally:
            drain.cancel()
            self.hub.unregister(subscriber)
            log.info("realtime.disconnected", connections=self.hub.connection_count)

    async def _drain(self, websocket: ServerConnection, subscriber: Subscriber) -> None:
        while True:
            frame = await subscriber.queue.get()
            if frame is CLOSE_SENTINEL:
                await websocket.close(CLOSE_TRY_AGAIN, "subscriber too slow")
                return
            try:
                await websocket.send(frame)
            except ConnectionClosed:
                return

    async def _on_frame(self, websocket: ServerConnection, subscriber: Subscriber, raw) -> None:
        try:
            command = ClientCommand.from_json(raw)
            topic = topic_for(command)
        except (ProtocolError, InvalidTopic) as exc:
            await self._send_error(websocket, str(exc))
            return

        if command.event not in _JOIN:
            self.hub.leave(subscriber, topic)
            return

        if self._authorizer is not None and not await self._authorizer.can_join(
            subscriber.user_id or "", topic
        ):
            logger.warning("realtime.join_denied", user_id=subscriber.user_id, topic=topic)
            await self._send_error(websocket, f"Not allowed to join {topic}.", topic)
            return
        self.hub.join(subscriber, topic)
        logger.debug("realtime.joined", subscriber_id=subscriber.id, topic=topic)

    @staticmethod
    async def _send_error(websocket: ServerConnection, detail: str, topic: str = "") -> None:
        message = ChannelMessage(protocol.ERROR, topic, {"detail": detail})
        try:
            await websocket.send(message.to_json())
        except ConnectionClosed:
            pass

    # ------------------------------------------------------------------
    # Broadcaster subscription
    # ------------------------------------------------------------------

    async def pump(self, redis_url: str, channel: str) -> None:
        """Feed broadcaster messages into the hub until cancelled."""
        client = aioredis.from_url(redis_url)
        pubsub = client.pubsub()
        await pubsub.subscribe(channel)
        logger.info("realtime.pump_started", channel=channel)
        try:
            async for item in pubsub.listen():
                if item["type"] != "message":
                    continue
                try:
                    message = ChannelMessage.from_json(item["data"])
                except ProtocolError as exc:
                    logger.error("realtime.bad_broadcast", error=str(exc))
                    continue
                self.hub.dispatch(message)
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            await client.aclose()

    async def run(self, host: str, port: int, redis_url: str, channel: str) -> None:
        async with serve(self.handler, host, port):
            logger.info("realtime.gateway_listening", host=host, port=port)
            await self.pump(redis_url, channel)
