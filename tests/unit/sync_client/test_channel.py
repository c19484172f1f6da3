"""Unit tests for the push connection manager.

Covers:
- Topics with handlers are joined on connect and rejoined on reconnect.
- Resync listeners run after a reconnect, not on the first connect.
- Exhausted reconnect attempts fall back to periodic pull refresh.
- Unsubscribing the last handler leaves the topic.
- A crashing handler is logged and never stops delivery to the others.
"""

from __future__ import annotations

import pytest

from shared.realtime.protocol import ChannelMessage, ClientCommand
from sync_client.channel import ConnectionManager, ConnectionState, membership_command
from sync_client.exceptions import NotFound
from sync_client.settings import ClientSettings


pytestmark = pytest.mark.unit


def make_settings(**overrides):
    values = {"reconnect_attempts": 3, "reconnect_base_delay": 0, "poll_interval": 60}
    values.update(overrides)
    return ClientSettings(**values)


def joins(transport, topic_event="joinOrderRoom"):
    return [c for c in transport.sent if c.event == topic_event]


class TestMembershipCommand:
    def test_commands(self):
        assert membership_command("order:abc", join=True) == ClientCommand("joinOrderRoom", ["abc"])
        assert membership_command("orderList:7:buyer", join=False) == ClientCommand(
            "leaveOrdersListRoom", ["7", "buyer"]
        )
        assert membership_command("user:7", join=True) == ClientCommand("joinUserRoom", ["7"])


class TestConnectionManager:
    async def test_joins_topics_on_connect_and_dispatches(self, make_transport, settle):
        transport = make_transport()
        manager = ConnectionManager(transport, make_settings())
        received = []
        manager.subscribe("order:abc", received.append)

        manager.start()
        await settle(lambda: manager.state is ConnectionState.CONNECTED)
        transport.push(ChannelMessage("orderUpdated", "order:abc", {"version": 2}))
        transport.push(ChannelMessage("orderUpdated", "order:other", {"version": 9}))
        await settle(lambda: len(received) == 1)

        assert joins(transport) == [ClientCommand("joinOrderRoom", ["abc"])]
        assert received[0].data == {"version": 2}
        await manager.stop()
        assert manager.state is ConnectionState.CLOSED
        assert transport.closed

    async def test_second_handler_does_not_rejoin(self, make_transport, settle):
        transport = make_transport()
        manager = ConnectionManager(transport, make_settings())
        manager.start()
        await settle(lambda: manager.state is ConnectionState.CONNECTED)

        manager.subscribe("order:abc", lambda m: None)
        manager.subscribe("order:abc", lambda m: None)
        await settle(lambda: len(transport.sent) >= 1)

        assert len(joins(transport)) == 1
        assert manager.topics == {"order:abc"}
        await manager.stop()

    async def test_last_unsubscribe_leaves(self, make_transport, settle):
        transport = make_transport()
        manager = ConnectionManager(transport, make_settings())
        first = manager.subscribe("order:abc", lambda m: None)
        second = manager.subscribe("order:abc", lambda m: None)
        manager.start()
        await settle(lambda: manager.state is ConnectionState.CONNECTED)

        manager.unsubscribe(first)
        await settle(lambda: True)
        assert joins(transport, "leaveOrderRoom") == []

        manager.unsubscribe(second)
        await settle(lambda: bool(joins(transport, "leaveOrderRoom")))
        assert manager.topics == set()
        await manager.stop()

    async def test_reconnect_rejoins_and_resyncs(self, make_transport, settle):
        transport = make_transport()
        manager = ConnectionManager(transport, make_settings())
        resyncs = []

        async def resync():
            resyncs.append(transport.connects)

        manager.add_resync_listener(resync)
        manager.subscribe("order:abc", lambda m: None)
        manager.subscribe("user:7", lambda m: None)
        manager.start()
        await settle(lambda: manager.state is ConnectionState.CONNECTED)
        assert resyncs == []

        transport.drop()
        await settle(lambda: transport.connects == 2 and manager.state is ConnectionState.CONNECTED)
        await settle(lambda: bool(resyncs))

        assert resyncs == [2]
        assert len(joins(transport)) == 2
        assert len(joins(transport, "joinUserRoom")) == 2
        await manager.stop()

    async def test_backoff_retries_before_connecting(self, make_transport, settle):
        transport = make_transport(failures=2)
        manager = ConnectionManager(transport, make_settings())

        manager.start()
        await settle(lambda: manager.state is ConnectionState.CONNECTED)

        assert transport.connects == 3
        await manager.stop()

    async def test_falls_back_to_pull(self, make_transport, settle):
        transport = make_transport(failures=None)
        manager = ConnectionManager(transport, make_settings(reconnect_attempts=2))
        polls = []

        async def poll():
            polls.append(manager.state)

        manager.add_resync_listener(poll)
        manager.start()
        await settle(lambda: bool(polls))

        assert manager.state is ConnectionState.PULL
        assert polls == [ConnectionState.PULL]
        assert transport.connects == 2
        await manager.stop()

    async def test_manual_reconnect_leaves_pull_mode(self, make_transport, settle):
        transport = make_transport(failures=2)
        manager = ConnectionManager(transport, make_settings(reconnect_attempts=2))
        manager.add_resync_listener(lambda: settle(lambda: True))
        manager.start()
        await settle(lambda: manager.state is ConnectionState.PULL)

        await manager.reconnect()
        await settle(lambda: manager.state is ConnectionState.CONNECTED)

        assert transport.connects == 3
        await manager.stop()

    async def test_failing_resync_listener_does_not_stop_others(self, make_transport, settle):
        transport = make_transport(failures=None)
        manager = ConnectionManager(transport, make_settings(reconnect_attempts=1))
        calls = []

        async def broken():
            raise NotFound("gone")

        async def healthy():
            calls.append(True)

        manager.add_resync_listener(broken)
        manager.add_resync_listener(healthy)
        manager.start()
        await settle(lambda: bool(calls))

        assert manager.state is ConnectionState.PULL
        await manager.stop()

    async def test_server_errors_are_not_dispatched(self, make_transport, settle):
        transport = make_transport()
        manager = ConnectionManager(transport, make_settings())
        received = []
        manager.subscribe("user:8", received.append)
        manager.start()
        await settle(lambda: manager.state is ConnectionState.CONNECTED)

        transport.push(ChannelMessage("error", "user:8", {"detail": "Not allowed"}))
        transport.push(ChannelMessage("cartUpdated", "user:8", {"count": 1}))
        await settle(lambda: bool(received))

        assert [m.event for m in received] == ["cartUpdated"]
        await manager.stop()

    async def test_crashing_handler_does_not_stop_dispatch(self, make_transport, settle):
        transport = make_transport()
        manager = ConnectionManager(transport, make_settings())
        received = []

        def broken(message):
            raise KeyError("status")

        manager.subscribe("order:abc", broken)
        manager.subscribe("order:abc", received.append)
        manager.start()
        await settle(lambda: manager.state is ConnectionState.CONNECTED)

        transport.push(ChannelMessage("orderUpdated", "order:abc", {"version": 2}))
        transport.push(ChannelMessage("orderUpdated", "order:abc", {"version": 3}))
        await settle(lambda: len(received) == 2)

        assert [m.data["version"] for m in received] == [2, 3]
        assert manager.state is ConnectionState.CONNECTED
        await manager.stop()
