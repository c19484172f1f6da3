"""Unit tests for the outbox relay and the channel messages it produces.

Covers:
- A flush turns committed rows into order, list and cart messages.
- Published rows are never delivered twice.
- A failing handler marks the row FAILED; retries stop at the limit.
"""

from __future__ import annotations

import pytest

from modules.core.models import EventStatus, OutboxEvent
from modules.realtime.publisher import realtime_publisher
from modules.realtime.relay import OutboxRelay, outbox_relay
from modules.realtime.tasks import relay_outbox
from shared.realtime.protocol import CART_UPDATED, ORDER_UPDATED, ORDERS_LIST_UPDATED

pytestmark = pytest.mark.unit


class ExplodingBus:
    def publish(self, event):
        raise RuntimeError("handler crashed")

    def publish_all(self, events):
        for event in events:
            self.publish(event)

    def subscribe(self, event_class, handler):
        pass


def _by_topic(broadcaster, topic):
    return [m for m in broadcaster.messages if m.topic == topic]


class TestFlush:
    def test_checkout_produces_snapshot_list_and_cart_messages(
        self, pending_order, buyer, seller, broadcaster
    ):
        stats = outbox_relay.flush()

        assert stats.published == OutboxEvent.objects.count()
        assert stats.failed == 0

        snapshots = _by_topic(broadcaster, f"order:{pending_order.id}")
        assert snapshots and all(m.event == ORDER_UPDATED for m in snapshots)
        assert snapshots[-1].data["orderId"] == str(pending_order.id)
        assert snapshots[-1].data["status"] == "Payment Pending"

        assert _by_topic(broadcaster, f"orderList:{buyer.id}:buyer")[0].event == ORDERS_LIST_UPDATED
        assert _by_topic(broadcaster, f"orderList:{seller.id}:seller")[0].event == ORDERS_LIST_UPDATED

        cart = _by_topic(broadcaster, f"user:{buyer.id}")
        assert cart[-1].event == CART_UPDATED
        assert cart[-1].data == {"count": 0}

    def test_rows_are_delivered_once(self, pending_order, broadcaster):
        outbox_relay.flush()
        sent = len(broadcaster.messages)

        assert outbox_relay.flush().published == 0
        assert len(broadcaster.messages) == sent
        assert not OutboxEvent.objects.exclude(status=EventStatus.DELIVERED).exists()

    def test_snapshot_versions_increase(self, confirmed_order, broadcaster):
        outbox_relay.flush()

        versions = [
            m.data["version"] for m in _by_topic(broadcaster, f"order:{confirmed_order.id}")
        ]
        assert versions == sorted(versions)
        assert versions[-1] == confirmed_order.version

    def test_failing_handler_marks_rows_failed(self, pending_order, broadcaster):
        relay = OutboxRelay(bus=ExplodingBus(), max_retries=1)

        stats = relay.flush()

        assert stats.published == 0
        assert stats.failed == OutboxEvent.objects.count()
        row = OutboxEvent.objects.first()
        assert row.status == EventStatus.FAILED
        assert row.retry_count == 1
        assert "handler crashed" in row.error_message
        assert relay.flush().failed == 0
        assert broadcaster.messages == []

    def test_failed_rows_are_retried(self, pending_order, broadcaster):
        OutboxRelay(bus=ExplodingBus()).flush()

        stats = outbox_relay.flush()

        assert stats.published == OutboxEvent.objects.count()
        assert broadcaster.messages

    def test_task_reports_counts(self, pending_order):
        result = relay_outbox()
        assert result["failed"] == 0
        assert result["published"] == OutboxEvent.objects.count()


class TestPublisher:
    def test_list_invalidation_pings_both_parties(self, broadcaster):
        realtime_publisher.publish_list_invalidation("3", "9")

        assert [m.topic for m in broadcaster.messages] == [
            "orderList:3:buyer",
            "orderList:9:seller",
        ]
        assert all(m.data is None for m in broadcaster.messages)

    def test_cart_count(self, broadcaster):
        realtime_publisher.publish_cart_count("3", 4)
        assert broadcaster.messages[0].data == {"count": 4}
