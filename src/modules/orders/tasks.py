"""Scheduled tasks for the orders module."""

import structlog
from celery import shared_task

logger = structlog.get_logger(__name__)


@shared_task(name="orders.expire_pending_orders")
def expire_pending_orders() -> dict:
    """Cancel unpaid orders whose payment window has closed."""
    from modules.orders.services import build_order_service

    expired = build_order_service().expire_pending_orders()
    logger.info("order.expire_task_completed", expired=len(expired))
    return {"expired": [str(order_id) for order_id in expired]}


@shared_task(name="orders.sync_active_shipments")
def sync_active_shipments() -> dict:
    """Pull carrier tracking for every order with an active shipment."""
    from modules.orders.repositories.django_repository import OrderDjangoRepository
    from modules.shipping.carrier import get_carrier
    from modules.shipping.reconciler import CarrierReconciler

    reconciler = CarrierReconciler(OrderDjangoRepository(), get_carrier())
    return reconciler.sync_active_shipments()
