"""Django ORM implementation of the Order repository.

Satisfies ``IOrderRepository`` using Django's QuerySet API.
All write operations are wrapped in ``transaction.atomic()`` so the
Order aggregate (Order + OrderItems + history + outbox rows) commits as
one unit.

Concurrency control uses ``select_for_update()`` on the order row; the
``version`` column is bumped on every save so clients can discard
snapshots older than the one they already hold.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Q, QuerySet
from django.utils import timezone

from modules.core.outbox import record_outbox_events
from modules.orders.constants import (
    ACTIVE_SHIPMENT_STATES,
    EXPIRABLE_STATES,
    RETRYABLE_PAYMENT_STATES,
)
from modules.orders.dtos import OrderSnapshotDTO
from modules.orders.events import OrderSnapshotChanged
from modules.orders.models import Order, OrderItem, OrderStatusHistory
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

_RELATIONS = ("items__product", "status_history")


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items atomically.

        ``data`` keys:
        - ``buyer_id`` / ``seller_id`` (required)
        - ``items`` (required): list of dicts with ``product_id``,
          ``quantity``, ``lot_size``, ``unit_price``
        - ``idempotency_key`` (optional)
        """
        order = Order(
            buyer_id=data["buyer_id"],
            seller_id=data["seller_id"],
            idempotency_key=data.get("idempotency_key"),
        )
        order.save()

        total = Decimal("0.00")
        items = data.get("items", [])
        for item_data in items:
            item = OrderItem(
                order=order,
                product_id=item_data["product_id"],
                quantity=item_data["quantity"],
                lot_size=item_data["lot_size"],
                unit_price=item_data["unit_price"],
            )
            item.save()
            total += item.line_total

        order.total_price = total
        order.save(update_fields=["total_price", "updated_at"])

        log = logger.bind(order_id=str(order.id), item_count=len(items))
        log.info("order.created")

        return order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with eager-loaded relations.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return Order.objects.prefetch_related(*_RELATIONS).filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> QuerySet[Order]:
        """Lazy queryset so views can stack filtering and pagination on it."""
        queryset = Order.objects.prefetch_related("items")
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock (SELECT FOR UPDATE).

        Eager-loads items (with product) so the caller can iterate
        over them while the row is locked.
        """
        try:
            return (
                Order.objects.select_for_update()
                .prefetch_related(*_RELATIONS)
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_by_idempotency_key(self, key: str, buyer_id: int) -> List[Order]:
        return list(
            Order.objects.prefetch_related(*_RELATIONS)
            .filter(idempotency_key=key, buyer_id=buyer_id)
            .order_by("created_at")
        )

    def get_by_payment_order_id(self, payment_order_id: str) -> Optional[Order]:
        if not payment_order_id:
            return None
        return (
            Order.objects.prefetch_related(*_RELATIONS)
            .filter(
                Q(payment_order_id=payment_order_id)
                | Q(payment_sessions__payment_order_id=payment_order_id)
            )
            .distinct()
            .first()
        )

    def expired_pending_ids(self, created_before: datetime) -> List[UUID]:
        return list(
            Order.objects.filter(
                status__in=EXPIRABLE_STATES,
                payment_status__in=RETRYABLE_PAYMENT_STATES,
                created_at__lt=created_before,
            )
            .order_by("created_at")
            .values_list("id", flat=True)
        )

    def trackable_ids(self) -> List[UUID]:
        return list(
            Order.objects.filter(status__in=ACTIVE_SHIPMENT_STATES)
            .exclude(awb_code__isnull=True)
            .exclude(awb_code="")
            .order_by("last_tracking_sync_at", "created_at")
            .values_list("id", flat=True)
        )

    # ------------------------------------------------------------------
    # Save (IRepository contract)
    # ------------------------------------------------------------------

    @transaction.atomic
    def save(self, entity: Order) -> Order:
        """Persist the order, bump its version and write its outbox rows.

        When the aggregate raised domain events, a full snapshot of the
        order as it is about to commit is appended as the last event so
        subscribers receive one authoritative state per save.
        """
        if not entity._state.adding:
            entity.version += 1
        entity.save()

        events = entity.domain_events
        if events:
            fresh = self.get_by_id(str(entity.id)) or entity
            snapshot = OrderSnapshotDTO.from_entity(fresh)
            entity.add_domain_event(
                OrderSnapshotChanged(
                    aggregate_id=entity.id,
                    buyer_id=str(entity.buyer_id),
                    seller_id=str(entity.seller_id),
                    version=entity.version,
                    list_changed=any(e.affects_list for e in events),
                    snapshot=snapshot.to_wire(),
                )
            )
        rows = record_outbox_events(entity, topic="orders")

        logger.info(
            "order.saved",
            order_id=str(entity.id),
            version=entity.version,
            event_count=len(rows),
        )
        return entity

    # ------------------------------------------------------------------
    # Order-specific writes
    # ------------------------------------------------------------------

    @transaction.atomic
    def add_history(
        self,
        order_id: UUID,
        status: str,
        note: str = "",
        old_status: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        user_id: Optional[int] = None,
    ) -> OrderStatusHistory:
        """Append a status change, never earlier than the previous entry."""
        last = (
            OrderStatusHistory.objects.filter(order_id=order_id)
            .order_by("-timestamp", "-id")
            .first()
        )
        at = timestamp or timezone.now()
        if last is not None and at < last.timestamp:
            at = last.timestamp

        history = OrderStatusHistory.objects.create(
            order_id=order_id,
            old_status=old_status,
            new_status=status,
            note=note,
            timestamp=at,
            user_id=user_id,
        )

        logger.info(
            "order.history_added",
            order_id=str(order_id),
            old_status=old_status,
            new_status=status,
        )
        return history
