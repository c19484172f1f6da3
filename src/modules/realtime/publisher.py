"""Turns committed state changes into channel messages."""

from __future__ import annotations

from typing import Any, Dict

import structlog

from modules.realtime.broadcaster import get_broadcaster
from shared.realtime.protocol import (
    CART_UPDATED,
    ORDER_UPDATED,
    ORDERS_LIST_UPDATED,
    ChannelMessage,
)
from shared.realtime.topics import order_list_topic, order_topic, user_topic

logger = structlog.get_logger(__name__)


class RealtimePublisher:
    def publish_order_snapshot(self, order_id: str, snapshot: Dict[str, Any]) -> None:
        """Full snapshot to everyone viewing the order."""
        self._send(ChannelMessage(ORDER_UPDATED, order_topic(order_id), snapshot))

    def publish_list_invalidation(self, buyer_id: str, seller_id: str) -> None:
        """Ping both parties' order lists; clients refetch the page they show."""
        self._send(ChannelMessage(ORDERS_LIST_UPDATED, order_list_topic(buyer_id, "buyer")))
        self._send(ChannelMessage(ORDERS_LIST_UPDATED, order_list_topic(seller_id, "seller")))

    def publish_cart_count(self, buyer_id: str, count: int) -> None:
        self._send(ChannelMessage(CART_UPDATED, user_topic(buyer_id), {"count": count}))

    @staticmethod
    def _send(message: ChannelMessage) -> None:
        get_broadcaster().publish(message)
        logger.info("realtime.message_sent", topic=message.topic, event_name=message.event)


realtime_publisher = RealtimePublisher()
