"""Cart Reservation Ledger.

Holds the cart lines taken out of a buyer's cart by a Payment Pending order
and decides what happens to them when the order leaves that state:

- payment succeeds → the reservation is CONSUMED (lines are gone for good);
- order cancelled / expired before payment → the reservation is RESTORED:
  every line is merged back into the active cart by summing quantities,
  capped at the whole lots the product stock can still cover.

All methods expect to run inside the caller's ``transaction.atomic()``
block, after the order row has been locked.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Sequence
from uuid import UUID

import structlog
from django.db import transaction
from django.utils import timezone

from modules.cart.events import CartChanged
from modules.cart.exceptions import ReservationConflict
from modules.cart.models import (
    CartItem,
    CartReservation,
    ReservationItem,
    ReservationStatus,
)

if TYPE_CHECKING:
    from modules.cart.repositories.interfaces import ICartRepository
    from modules.orders.models import Order
    from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RestoredLine:
    product_id: UUID
    lot_size: int
    reserved: int
    restored: int
    merged_into_existing: bool


class CartReservationLedger:
    """Application service for cart reservations."""

    def __init__(
        self,
        cart_repository: ICartRepository,
        product_repository: IProductRepository,
    ) -> None:
        self._cart_repo = cart_repository
        self._product_repo = product_repository

    # ------------------------------------------------------------------
    # Reserve
    # ------------------------------------------------------------------

    @transaction.atomic
    def reserve(self, order: Order, lines: Sequence[CartItem]) -> CartReservation:
        """Move *lines* out of the buyer's cart into a reservation for *order*.

        Raises:
            ReservationConflict: a line no longer exists in the cart, i.e.
                another checkout already reserved it.
        """
        line_ids = [line.id for line in lines]
        still_in_cart = set(
            CartItem.objects.select_for_update()
            .filter(id__in=line_ids)
            .values_list("id", flat=True)
        )
        missing = [str(i) for i in line_ids if i not in still_in_cart]
        if missing:
            raise ReservationConflict(
                f"Cart lines {', '.join(missing)} are already reserved by another order."
            )

        reservation = CartReservation.objects.create(order=order, buyer_id=order.buyer_id)
        ReservationItem.objects.bulk_create(
            [
                ReservationItem(
                    reservation=reservation,
                    product_id=line.product_id,
                    lot_size=line.lot_size,
                    quantity=line.quantity,
                )
                for line in lines
            ]
        )
        CartItem.objects.filter(id__in=line_ids).delete()

        logger.info(
            "cart.reserved",
            order_id=str(order.id),
            buyer_id=order.buyer_id,
            line_count=len(lines),
            lots=sum(line.quantity for line in lines),
        )
        self._signal_cart_changed(order.buyer_id, reason="reserved")
        return reservation

    @transaction.atomic
    def reserve_direct(
        self, order: Order, product_id: UUID, lot_size: int, quantity: int
    ) -> CartReservation:
        """Reserve a line that never sat in the cart (buy now).

        The cart is untouched now; a restore still merges the line into it.
        """
        reservation = CartReservation.objects.create(order=order, buyer_id=order.buyer_id)
        ReservationItem.objects.create(
            reservation=reservation,
            product_id=product_id,
            lot_size=lot_size,
            quantity=quantity,
        )
        logger.info(
            "cart.reserved_direct",
            order_id=str(order.id),
            buyer_id=order.buyer_id,
            product_id=str(product_id),
            lots=quantity,
        )
        return reservation

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    @transaction.atomic
    def restore(self, order: Order) -> List[RestoredLine]:
        """Put every reserved line of *order* back into the buyer's cart.

        Existing cart lines for the same product are merged (quantities
        summed) instead of duplicated.  The merged quantity never exceeds
        the lots the current stock covers; a line the buyer already holds
        is never reduced by a restore.

        Returns an empty list when *order* holds no active reservation
        (never reserved, already restored, or consumed by a payment).
        """
        reservation = self._cart_repo.get_reservation_for_update(str(order.id))
        if reservation is None or not reservation.is_active:
            return []

        log = logger.bind(order_id=str(order.id), buyer_id=order.buyer_id)
        cart = self._cart_repo.get_or_create_for_buyer(order.buyer_id)
        items = list(reservation.items.all())
        products = self._product_repo.lock_many(item.product_id for item in items)
        existing = {
            line.product_id: line for line in self._cart_repo.lock_items(cart)
        }

        restored: List[RestoredLine] = []
        for item in items:
            product = products.get(item.product_id)
            cap = product.available_lots if product else 0
            line = existing.get(item.product_id)
            current = line.quantity if line else 0
            merged = max(current, min(current + item.quantity, cap))
            put_back = merged - current

            if line is not None and put_back:
                line.quantity = merged
                line.save(update_fields=["quantity", "updated_at"])
            elif line is None and merged:
                existing[item.product_id] = CartItem.objects.create(
                    cart=cart,
                    product_id=item.product_id,
                    lot_size=item.lot_size,
                    quantity=merged,
                )

            item.restored_quantity = put_back
            item.save(update_fields=["restored_quantity", "updated_at"])
            if put_back < item.quantity:
                log.warning(
                    "cart.restore_capped",
                    product_id=str(item.product_id),
                    reserved=item.quantity,
                    restored=put_back,
                    available_lots=cap,
                )
            restored.append(
                RestoredLine(
                    product_id=item.product_id,
                    lot_size=item.lot_size,
                    reserved=item.quantity,
                    restored=put_back,
                    merged_into_existing=line is not None,
                )
            )

        self._resolve(reservation, ReservationStatus.RESTORED)
        log.info(
            "cart.restored",
            line_count=len(restored),
            lots=sum(r.restored for r in restored),
        )
        self._signal_cart_changed(order.buyer_id, reason="restored")
        return restored

    # ------------------------------------------------------------------
    # Consume
    # ------------------------------------------------------------------

    @transaction.atomic
    def consume(self, order: Order) -> bool:
        """Drop the reservation for good once the order is paid.

        Returns ``False`` when there was nothing to consume.
        """
        reservation = self._cart_repo.get_reservation_for_update(str(order.id))
        if reservation is None or not reservation.is_active:
            return False
        self._resolve(reservation, ReservationStatus.CONSUMED)
        logger.info("cart.reservation_consumed", order_id=str(order.id))
        self._signal_cart_changed(order.buyer_id, reason="consumed")
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def cart_count(self, buyer_id: int) -> int:
        return self._cart_repo.count_items(buyer_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve(reservation: CartReservation, status: str) -> None:
        reservation.status = status
        reservation.resolved_at = timezone.now()
        reservation.save(update_fields=["status", "resolved_at", "updated_at"])

    def _signal_cart_changed(self, buyer_id: int, reason: str) -> None:
        cart = self._cart_repo.get_or_create_for_buyer(buyer_id)
        cart.add_domain_event(
            CartChanged(aggregate_id=cart.id, buyer_id=str(buyer_id), reason=reason)
        )
        self._cart_repo.save(cart)
