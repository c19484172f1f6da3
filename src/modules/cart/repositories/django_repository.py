"""Django ORM implementation of the Cart repository."""

from __future__ import annotations

from typing import List, Optional

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction

from modules.cart.models import Cart, CartItem, CartReservation
from modules.cart.repositories.interfaces import ICartRepository
from modules.core.outbox import record_outbox_events

logger = structlog.get_logger(__name__)


class CartDjangoRepository(ICartRepository):
    """Concrete Cart repository backed by Django ORM."""

    @transaction.atomic
    def save(self, entity: Cart) -> Cart:
        """Persist the cart and drain its domain events into the outbox."""
        entity.save()
        rows = record_outbox_events(entity, topic="cart")
        logger.info("cart.saved", cart_id=str(entity.id), event_count=len(rows))
        return entity

    def get_or_create_for_buyer(self, buyer_id: int) -> Cart:
        cart, created = Cart.objects.get_or_create(buyer_id=buyer_id)
        if created:
            logger.info("cart.created", buyer_id=buyer_id, cart_id=str(cart.id))
        return cart

    def lock_items(self, cart: Cart) -> List[CartItem]:
        return list(
            CartItem.objects.select_for_update()
            .select_related("product")
            .filter(cart=cart)
            .order_by("product_id")
        )

    def count_items(self, buyer_id: int) -> int:
        return CartItem.objects.filter(cart__buyer_id=buyer_id).count()

    def get_reservation_for_update(self, order_id: str) -> Optional[CartReservation]:
        try:
            return (
                CartReservation.objects.select_for_update()
                .prefetch_related("items__product")
                .filter(order_id=order_id)
                .first()
            )
        except (ValueError, ValidationError):
            return None
