"""Order domain constants.

Defines status choices and valid status transitions for the order
state machine.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    PAYMENT_PENDING = "Payment Pending", "Payment Pending"
    CONFIRMED = "Confirmed", "Confirmed"
    PROCESSING = "Processing", "Processing"
    PACKED = "Packed", "Packed"
    SHIPPED = "Shipped", "Shipped"
    IN_TRANSIT = "In Transit", "In Transit"
    OUT_FOR_DELIVERY = "Out for Delivery", "Out for Delivery"
    DELIVERED = "Delivered", "Delivered"
    COMPLETED = "Completed", "Completed"
    CANCELLATION_REQUESTED = "Cancellation Requested", "Cancellation Requested"
    CANCELLED = "Cancelled", "Cancelled"
    DELIVERY_FAILED = "Delivery Failed", "Delivery Failed"
    RTO_INITIATED = "RTO Initiated", "RTO Initiated"
    RTO_DELIVERED = "RTO Delivered", "RTO Delivered"
    RETURN_REQUESTED = "Return Requested", "Return Requested"
    RETURN_APPROVED = "Return Approved", "Return Approved"
    RETURN_REJECTED = "Return Rejected", "Return Rejected"
    RETURNED = "Returned", "Returned"
    REFUNDED = "Refunded", "Refunded"


class PaymentStatus(models.TextChoices):
    PENDING = "Pending", "Pending"
    PAID = "Paid", "Paid"
    FAILED = "Failed", "Failed"
    REFUND_REQUESTED = "Refund Requested", "Refund Requested"
    REFUND_PROCESSING = "Refund Processing", "Refund Processing"
    PARTIALLY_REFUNDED = "Partially Refunded", "Partially Refunded"
    REFUNDED = "Refunded", "Refunded"


# Post-Confirmed, pre-Delivered: carrier reconciliation runs here and a
# cancellation request or delivery failure may interrupt the flow.
ACTIVE_SHIPMENT_STATES: frozenset[str] = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.PACKED,
        OrderStatus.SHIPPED,
        OrderStatus.IN_TRANSIT,
        OrderStatus.OUT_FOR_DELIVERY,
    }
)

# Carriers skip scans; any forward jump along this chain is accepted.
SHIPPING_CHAIN: tuple[str, ...] = (
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
    OrderStatus.IN_TRANSIT,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
)

_INTERRUPTIONS = {OrderStatus.CANCELLATION_REQUESTED, OrderStatus.DELIVERY_FAILED}


def _forward(status: str) -> set[str]:
    position = SHIPPING_CHAIN.index(status)
    return set(SHIPPING_CHAIN[position + 1 :])


VALID_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.PAYMENT_PENDING: {
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
        OrderStatus.CANCELLATION_REQUESTED,
    },
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING} | _INTERRUPTIONS,
    OrderStatus.PROCESSING: {OrderStatus.PACKED} | _INTERRUPTIONS,
    OrderStatus.PACKED: _forward(OrderStatus.PACKED) | _INTERRUPTIONS,
    OrderStatus.SHIPPED: _forward(OrderStatus.SHIPPED) | _INTERRUPTIONS,
    OrderStatus.IN_TRANSIT: _forward(OrderStatus.IN_TRANSIT) | _INTERRUPTIONS,
    OrderStatus.OUT_FOR_DELIVERY: _forward(OrderStatus.OUT_FOR_DELIVERY)
    | _INTERRUPTIONS,
    OrderStatus.DELIVERED: {
        OrderStatus.COMPLETED,
        OrderStatus.RETURN_REQUESTED,
        OrderStatus.RETURN_REJECTED,
    },
    OrderStatus.CANCELLATION_REQUESTED: {OrderStatus.CANCELLED},
    OrderStatus.DELIVERY_FAILED: {OrderStatus.RTO_INITIATED},
    OrderStatus.RTO_INITIATED: {OrderStatus.RTO_DELIVERED},
    OrderStatus.RETURN_REQUESTED: {
        OrderStatus.RETURN_APPROVED,
        OrderStatus.RETURN_REJECTED,
    },
    OrderStatus.RETURN_APPROVED: {OrderStatus.RETURNED},
    OrderStatus.RETURNED: {OrderStatus.REFUNDED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
    OrderStatus.RTO_DELIVERED: set(),
    OrderStatus.RETURN_REJECTED: set(),
}

TERMINAL_STATES: frozenset[str] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

RETRYABLE_PAYMENT_STATES: frozenset[str] = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.FAILED}
)

# Unpaid orders in these states hold a reservation the expiration sweep
# must eventually release.
EXPIRABLE_STATES: frozenset[str] = frozenset(
    {OrderStatus.PAYMENT_PENDING, OrderStatus.CANCELLATION_REQUESTED}
)

CANCELLATION_REASON_EXPIRED = "Expired"

ORDER_NUMBER_MAX_RETRIES = 5
