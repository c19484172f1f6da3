"""Event handlers for Cart domain events."""

from __future__ import annotations

import structlog

from modules.cart.events import CartChanged
from modules.cart.repositories.django_repository import CartDjangoRepository
from modules.realtime.publisher import realtime_publisher
from shared.domain.events import IEventHandler

logger = structlog.get_logger(__name__)


class CartChangedHandler(IEventHandler[CartChanged]):
    """Push the fresh cart count to the buyer's user topic."""

    def handle(self, event: CartChanged) -> None:
        count = CartDjangoRepository().count_items(int(event.buyer_id))
        logger.info(
            "cart.event.changed",
            buyer_id=event.buyer_id,
            reason=event.reason,
            item_count=count,
        )
        realtime_publisher.publish_cart_count(event.buyer_id, count)


cart_changed_handler = CartChangedHandler()
