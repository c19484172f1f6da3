"""Event handlers for Orders domain events."""

from __future__ import annotations

import structlog

from modules.orders.events import (
    OrderCancelled,
    OrderCarrierUpdated,
    OrderCreated,
    OrderSnapshotChanged,
    OrderStatusChanged,
    OrderTrackingSyncChanged,
)
from modules.realtime.publisher import realtime_publisher
from shared.domain.events import IEventHandler

logger = structlog.get_logger(__name__)


class OrderSnapshotChangedHandler(IEventHandler[OrderSnapshotChanged]):
    """Push the committed snapshot to the order topic and, when a list
    field changed, ping both parties' order lists."""

    def handle(self, event: OrderSnapshotChanged) -> None:
        order_id = str(event.aggregate_id)
        realtime_publisher.publish_order_snapshot(order_id, event.snapshot)
        if event.list_changed:
            realtime_publisher.publish_list_invalidation(event.buyer_id, event.seller_id)
        logger.info(
            "order.event.snapshot_pushed",
            order_id=order_id,
            version=event.version,
            list_changed=event.list_changed,
        )


class OrderCreatedHandler(IEventHandler[OrderCreated]):
    def handle(self, event: OrderCreated) -> None:
        logger.info(
            "order.event.created",
            order_id=str(event.aggregate_id),
            buyer_id=event.buyer_id,
            seller_id=event.seller_id,
        )


class OrderCancelledHandler(IEventHandler[OrderCancelled]):
    def handle(self, event: OrderCancelled) -> None:
        logger.info(
            "order.event.cancelled",
            order_id=str(event.aggregate_id),
            reason=event.reason,
        )


class OrderStatusChangedHandler(IEventHandler[OrderStatusChanged]):
    def handle(self, event: OrderStatusChanged) -> None:
        logger.info(
            "order.event.status_changed",
            order_id=str(event.aggregate_id),
            old_status=event.old_status,
            new_status=event.new_status,
        )


class OrderCarrierUpdatedHandler(IEventHandler[OrderCarrierUpdated]):
    def handle(self, event: OrderCarrierUpdated) -> None:
        logger.info(
            "order.event.carrier_updated",
            order_id=str(event.aggregate_id),
            awb_code=event.awb_code,
            courier_name=event.courier_name,
        )


class OrderTrackingSyncChangedHandler(IEventHandler[OrderTrackingSyncChanged]):
    def handle(self, event: OrderTrackingSyncChanged) -> None:
        log = logger.bind(order_id=str(event.aggregate_id))
        if event.failed:
            log.warning("order.event.tracking_sync_failed")
        else:
            log.info("order.event.tracking_sync_recovered")


order_snapshot_changed_handler = OrderSnapshotChangedHandler()
order_created_handler = OrderCreatedHandler()
order_cancelled_handler = OrderCancelledHandler()
order_status_changed_handler = OrderStatusChangedHandler()
order_carrier_updated_handler = OrderCarrierUpdatedHandler()
order_tracking_sync_changed_handler = OrderTrackingSyncChangedHandler()
