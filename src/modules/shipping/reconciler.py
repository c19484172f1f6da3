"""Carrier Reconciler.

Pulls the live carrier timeline for an order and merges the scans the
order history does not have yet.  Safe to call any number of times: a
scan whose mapped status already appears in the history is skipped, so a
second run against an unchanged timeline changes nothing.

Carrier outages never surface as errors: the cached order is returned
and the order is flagged ``tracking_sync_failed`` (one pushed snapshot)
until a later sync succeeds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List
from uuid import UUID

import structlog
from django.db import transaction
from django.utils import timezone

from modules.orders.events import OrderCarrierUpdated, OrderTrackingSyncChanged
from modules.orders.exceptions import OrderNotFound
from modules.orders.models import Order
from modules.orders.transitions import apply_transition
from modules.shipping.exceptions import CarrierSyncSoftFailure, CarrierUnavailable
from modules.shipping.status_map import map_carrier_status

if TYPE_CHECKING:
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.shipping.carrier.port import CarrierPort, TrackingResult

logger = structlog.get_logger(__name__)


@dataclass
class ReconcileResult:
    order: Order
    sync_failed: bool = False
    appended: List[str] = field(default_factory=list)


class CarrierReconciler:
    """Merges carrier tracking state into the Order Store."""

    def __init__(self, order_repository: IOrderRepository, carrier: CarrierPort) -> None:
        self._order_repo = order_repository
        self._carrier = carrier

    def reconcile(self, order_id: UUID) -> ReconcileResult:
        """Sync one order with its carrier.

        No-op (cached order returned) unless the order is between
        Confirmed and Out for Delivery and carries an AWB.

        Raises:
            OrderNotFound: order does not exist.
        """
        try:
            return self._reconcile(order_id)
        except CarrierSyncSoftFailure as exc:
            logger.warning("shipping.sync_soft_failed", order_id=str(order_id), error=str(exc))
            return ReconcileResult(order=self._flag_sync_failure(order_id), sync_failed=True)

    @transaction.atomic
    def _flag_sync_failure(self, order_id: UUID) -> Order:
        """Mark the order for a later retry; pushed once, when the flag is raised."""
        order = self._order_repo.get_for_update(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        if order.tracking_sync_failed:
            return self._order_repo.get_by_id(str(order_id)) or order
        order.tracking_sync_failed = True
        order.last_tracking_sync_at = timezone.now()
        order.add_domain_event(OrderTrackingSyncChanged(aggregate_id=order.id, failed=True))
        self._order_repo.save(order)
        return self._order_repo.get_by_id(str(order_id)) or order

    @transaction.atomic
    def _reconcile(self, order_id: UUID) -> ReconcileResult:
        order = self._order_repo.get_for_update(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")

        log = logger.bind(order_id=str(order_id), status=order.status, awb_code=order.awb_code)
        if not order.is_shipment_active or not order.awb_code:
            log.info("shipping.sync_skipped")
            return ReconcileResult(order=order)

        try:
            tracking = self._carrier.get_tracking(order.awb_code)
        except CarrierUnavailable as exc:
            raise CarrierSyncSoftFailure(str(exc)) from exc

        appended = self._merge_events(order, tracking)
        carrier_changed = self._merge_carrier_fields(order, tracking)
        recovered = order.tracking_sync_failed

        # An unchanged timeline writes nothing, so repeated syncs return
        # the same snapshot.
        if appended or carrier_changed or recovered:
            if recovered:
                order.tracking_sync_failed = False
                order.add_domain_event(
                    OrderTrackingSyncChanged(aggregate_id=order.id, failed=False)
                )
            order.last_tracking_sync_at = timezone.now()
            self._order_repo.save(order)

        log.info("shipping.synced", appended=appended, carrier_changed=carrier_changed)
        return ReconcileResult(
            order=self._order_repo.get_by_id(str(order_id)) or order, appended=appended
        )

    def _merge_events(self, order: Order, tracking: TrackingResult) -> List[str]:
        known = {entry.new_status for entry in order.status_history.all()}
        appended: List[str] = []
        for event in sorted(tracking.events, key=lambda e: e.occurred_at):
            target = map_carrier_status(event.status)
            if target is None or target in known:
                continue
            if not order.can_transition_to(target):
                logger.warning(
                    "shipping.scan_skipped",
                    order_id=str(order.id),
                    current_status=order.status,
                    carrier_status=event.status,
                )
                continue
            apply_transition(
                self._order_repo,
                order,
                target,
                note=event.description or f"Carrier scan: {event.status}",
                timestamp=event.occurred_at,
            )
            known.add(target)
            appended.append(target)
        return appended

    @staticmethod
    def _merge_carrier_fields(order: Order, tracking: TrackingResult) -> bool:
        changed = False
        for attr in ("courier_name", "tracking_url", "estimated_delivery_date"):
            value = getattr(tracking, attr)
            if value and getattr(order, attr) != value:
                setattr(order, attr, value)
                changed = True
        if changed:
            order.add_domain_event(
                OrderCarrierUpdated(
                    aggregate_id=order.id,
                    awb_code=order.awb_code or "",
                    courier_name=order.courier_name or "",
                )
            )
        return changed

    def sync_active_shipments(self) -> dict:
        """Reconcile every trackable order; used by the scheduled sync."""
        synced = failed = 0
        for order_id in self._order_repo.trackable_ids():
            result = self.reconcile(order_id)
            if result.sync_failed:
                failed += 1
            else:
                synced += 1
        logger.info("shipping.active_sync_completed", synced=synced, failed=failed)
        return {"synced": synced, "failed": failed}
