"""Unit tests for the WebSocket gateway's command handling and auth."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from rest_framework_simplejwt.tokens import AccessToken

from modules.realtime.gateway import (
    CLOSE_TRY_AGAIN,
    CLOSE_UNAUTHORIZED,
    RealtimeGateway,
    TokenAuthorizer,
    topic_for,
)
from modules.realtime.hub import Subscriber, TopicHub
from shared.realtime.protocol import ClientCommand, ProtocolError
from shared.realtime.topics import InvalidTopic

pytestmark = pytest.mark.unit


class FakeSocket:
    """Just enough of a server connection for the gateway."""

    def __init__(self, path="/ws", headers=None):
        self.request = SimpleNamespace(path=path, headers=headers or {})
        self.sent = []
        self.closed = None

    async def send(self, frame):
        self.sent.append(json.loads(frame))

    async def close(self, code, reason=""):
        self.closed = (code, reason)


@pytest.fixture()
def hub():
    return TopicHub()


@pytest.fixture()
def gateway(hub):
    return RealtimeGateway(hub, queue_size=8, authorizer=TokenAuthorizer())


class TestTopicFor:
    def test_commands_map_to_topics(self):
        assert topic_for(ClientCommand("joinOrderRoom", ["abc"])) == "order:abc"
        assert topic_for(ClientCommand("leaveOrdersListRoom", [7, "buyer"])) == "orderList:7:buyer"
        assert topic_for(ClientCommand("joinUserRoom", [7])) == "user:7"

    def test_missing_arguments(self):
        with pytest.raises(ProtocolError):
            topic_for(ClientCommand("joinOrdersListRoom", [7]))

    def test_unknown_command(self):
        with pytest.raises(ProtocolError):
            topic_for(ClientCommand("joinEverything", []))

    def test_bad_role(self):
        with pytest.raises(InvalidTopic):
            topic_for(ClientCommand("joinOrdersListRoom", [7, "admin"]))


class TestTokenAuthorizer:
    def test_query_token(self, buyer):
        token = AccessToken.for_user(buyer)
        assert TokenAuthorizer().authenticate(f"/ws?token={token}", None) == str(buyer.id)

    def test_bearer_header(self, buyer):
        token = AccessToken.for_user(buyer)
        assert TokenAuthorizer().authenticate("/ws", f"Bearer {token}") == str(buyer.id)

    def test_garbage_token(self):
        assert TokenAuthorizer().authenticate("/ws?token=garbage", None) is None

    def test_no_token(self):
        assert TokenAuthorizer().authenticate("/ws", None) is None

    def test_order_participants(self, pending_order, buyer, seller, stranger):
        order_id = str(pending_order.id)
        assert TokenAuthorizer._is_participant(order_id, str(buyer.id))
        assert TokenAuthorizer._is_participant(order_id, str(seller.id))
        assert not TokenAuthorizer._is_participant(order_id, str(stranger.id))
        assert not TokenAuthorizer._is_participant("not-a-uuid", str(buyer.id))

    async def test_users_join_only_their_own_topics(self):
        authorizer = TokenAuthorizer()
        assert await authorizer.can_join("7", "user:7")
        assert await authorizer.can_join("7", "orderList:7:seller")
        assert not await authorizer.can_join("7", "user:8")
        assert not await authorizer.can_join("7", "orderList:8:buyer")


class TestCommands:
    async def test_join_and_leave(self, gateway, hub):
        socket, subscriber = FakeSocket(), Subscriber("s1", "7", 8)

        await gateway._on_frame(socket, subscriber, '{"event":"joinUserRoom","args":["7"]}')
        assert hub.members("user:7") == {subscriber}

        await gateway._on_frame(socket, subscriber, '{"event":"leaveUserRoom","args":["7"]}')
        assert hub.members("user:7") == set()
        assert socket.sent == []

    async def test_foreign_topic_is_denied(self, gateway, hub):
        socket, subscriber = FakeSocket(), Subscriber("s1", "7", 8)

        await gateway._on_frame(socket, subscriber, '{"event":"joinUserRoom","args":["8"]}')

        assert hub.members("user:8") == set()
        assert socket.sent[0]["event"] == "error"
        assert socket.sent[0]["topic"] == "user:8"

    async def test_malformed_frame_gets_error(self, gateway):
        socket = FakeSocket()

        await gateway._on_frame(socket, Subscriber("s1", "7", 8), "{not json")

        assert socket.sent[0]["event"] == "error"
        assert "JSON" in socket.sent[0]["data"]["detail"]

    async def test_unauthenticated_connection_is_closed(self, gateway, hub):
        socket = FakeSocket(path="/ws")

        await gateway.handler(socket)

        assert socket.closed[0] == CLOSE_UNAUTHORIZED
        assert hub.connection_count == 0

    async def test_kicked_subscriber_is_closed(self, gateway):
        socket, subscriber = FakeSocket(), Subscriber("s1", "7", 1)
        subscriber.offer('{"event":"orderUpdated"}')
        subscriber.offer('{"event":"orderUpdated"}')

        await gateway._drain(socket, subscriber)

        assert socket.closed[0] == CLOSE_TRY_AGAIN
        assert socket.sent == []
