"""Asynchronous tasks for the payments module."""

from uuid import UUID

import structlog
from celery import shared_task

from modules.payments.exceptions import GatewayUnavailable

logger = structlog.get_logger(__name__)


@shared_task(
    name="payments.refund_order_payment",
    autoretry_for=(GatewayUnavailable,),
    retry_backoff=True,
    max_retries=5,
)
def refund_order_payment(order_id: str) -> dict:
    """Refund the captured payment of a cancelled or expired order."""
    from modules.payments.services import build_payment_coordinator

    refunded = build_payment_coordinator().refund(UUID(order_id))
    logger.info("payment.refund_task_completed", order_id=order_id, refunded=refunded)
    return {"order_id": order_id, "refunded": refunded}


@shared_task(
    name="payments.refund_duplicate_payment",
    autoretry_for=(GatewayUnavailable,),
    retry_backoff=True,
    max_retries=5,
)
def refund_duplicate_payment(attempt_id: str) -> dict:
    """Refund a capture made on a session whose order was already paid."""
    from modules.payments.services import build_payment_coordinator

    refunded = build_payment_coordinator().refund_attempt(UUID(attempt_id))
    logger.info("payment.duplicate_refund_task_completed", attempt_id=attempt_id, refunded=refunded)
    return {"attempt_id": attempt_id, "refunded": refunded}
