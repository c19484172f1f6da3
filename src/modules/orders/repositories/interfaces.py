"""Order repository interface.

Extends ``IRepository[Order]`` with methods required by the Order
aggregate: atomic creation with items, status history tracking,
row locking and the look-ups used by the scheduled sweeps.

The Service Layer depends exclusively on this contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderStatusHistory


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root.

    The Order aggregate includes OrderItem children and
    OrderStatusHistory records.  Mutations must be atomic.
    """

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items atomically.

        ``data`` must include ``buyer_id``, ``seller_id`` and ``items``
        (list of dicts with ``product_id``, ``quantity``, ``lot_size``,
        ``unit_price``); ``idempotency_key`` is optional.
        """

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with prefetched items and status history."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock (SELECT FOR UPDATE)."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> Iterable[Order]:
        """List orders (with items) matching optional field filters."""

    @abstractmethod
    def add_history(
        self,
        order_id: UUID,
        status: str,
        note: str = "",
        old_status: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        user_id: Optional[int] = None,
    ) -> OrderStatusHistory:
        """Append a status change to the order's audit trail."""

    @abstractmethod
    def get_by_idempotency_key(self, key: str, buyer_id: int) -> List[Order]:
        """Orders created by a checkout carrying *key*."""

    @abstractmethod
    def get_by_payment_order_id(self, payment_order_id: str) -> Optional[Order]:
        """Order that opened processor session *payment_order_id*, if any."""

    @abstractmethod
    def expired_pending_ids(self, created_before: datetime) -> List[UUID]:
        """Ids of unpaid, still-open orders created before *created_before*."""

    @abstractmethod
    def trackable_ids(self) -> List[UUID]:
        """Ids of orders in an active shipment state that carry an AWB."""
