"""Single entry point for order status changes.

Every actor (buyer, seller, payment verification, carrier reconciliation,
expiration sweep) goes through ``apply_transition`` while holding the
order row lock, so each accepted change appends exactly one history entry
and rejected changes leave the order untouched.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

import structlog
from django.db import transaction

from modules.orders.constants import OrderStatus, PaymentStatus
from modules.orders.events import OrderPaymentStatusChanged, OrderStatusChanged
from modules.orders.exceptions import InvalidTransition

if TYPE_CHECKING:
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)


def apply_transition(
    repository: IOrderRepository,
    order: Order,
    new_status: str,
    note: str = "",
    timestamp: Optional[datetime] = None,
    actor_id: Optional[int] = None,
) -> None:
    """Move the locked *order* to *new_status* (not persisted: caller saves).

    Raises:
        InvalidTransition: *new_status* is not reachable from the current
            status, or the order is terminal.
    """
    log = logger.bind(
        order_id=str(order.id),
        current_status=order.status,
        new_status=new_status,
    )
    if not order.can_transition_to(new_status):
        log.warning("order.invalid_transition")
        raise InvalidTransition(order.status, new_status)

    old_status = order.status
    repository.add_history(
        order_id=order.id,
        status=new_status,
        note=note,
        old_status=old_status,
        timestamp=timestamp,
        user_id=actor_id,
    )
    order.status = new_status
    order.add_domain_event(
        OrderStatusChanged(
            aggregate_id=order.id,
            old_status=old_status,
            new_status=new_status,
            note=note,
        )
    )

    if new_status == OrderStatus.CANCELLED and order.payment_status == PaymentStatus.PAID:
        set_payment_status(order, PaymentStatus.REFUND_REQUESTED)
        schedule_refund(order)
    elif new_status == OrderStatus.REFUNDED:
        set_payment_status(order, PaymentStatus.REFUNDED)

    log.info("order.status_updated")


def set_payment_status(order: Order, new_status: str) -> None:
    if order.payment_status == new_status:
        return
    old_status = order.payment_status
    order.payment_status = new_status
    order.add_domain_event(
        OrderPaymentStatusChanged(
            aggregate_id=order.id,
            old_status=old_status,
            new_status=new_status,
        )
    )
    logger.info(
        "order.payment_status_updated",
        order_id=str(order.id),
        old_status=old_status,
        new_status=new_status,
    )


def schedule_refund(order: Order) -> None:
    """Queue the processor refund once the surrounding transaction commits."""
    from modules.payments.tasks import refund_order_payment

    order_id = str(order.id)
    transaction.on_commit(lambda: refund_order_payment.delay(order_id))
    logger.info("order.refund_scheduled", order_id=order_id)
