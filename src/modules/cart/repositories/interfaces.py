"""Cart repository interface."""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, List, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.cart.models import Cart, CartItem, CartReservation


class ICartRepository(IRepository["Cart"]):
    """Repository contract for the Cart aggregate and its reservations."""

    @abstractmethod
    def get_or_create_for_buyer(self, buyer_id: int) -> Cart:
        """Return the buyer's active cart, creating it on first use."""

    @abstractmethod
    def lock_items(self, cart: Cart) -> List[CartItem]:
        """Lock and return the cart lines (SELECT FOR UPDATE)."""

    @abstractmethod
    def count_items(self, buyer_id: int) -> int:
        """Number of distinct lines currently in the buyer's cart."""

    @abstractmethod
    def get_reservation_for_update(self, order_id: str) -> Optional[CartReservation]:
        """Retrieve the reservation held by *order_id* with a row lock."""
