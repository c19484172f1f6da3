"""Unit tests for the Cart Reservation Ledger.

Covers:
- Reserve moves lines out of the cart; a line reserved twice conflicts.
- Restore puts every lot back, merging into existing lines.
- Merged quantity is capped at the lots the stock covers and never
  shrinks a line the buyer already holds.
- Consume and restore are one-shot: a resolved reservation is inert.
- Every change records a CartChanged event for the cart count push.
"""

from __future__ import annotations

import pytest

from modules.cart.exceptions import ReservationConflict
from modules.cart.models import CartItem, ReservationItem, ReservationStatus
from modules.core.models import OutboxEvent
from modules.orders.dtos import CheckoutDTO

pytestmark = pytest.mark.unit


def _quantity(user, product):
    line = CartItem.objects.filter(cart__buyer=user, product=product).first()
    return line.quantity if line else 0


@pytest.fixture()
def ledger(order_service):
    return order_service.ledger


@pytest.fixture()
def scarce_product(make_product):
    """Exactly two lots in stock."""
    return make_product(price="20.00", lot_size=5, stock=10)


@pytest.fixture()
def scarce_order(buyer, scarce_product, fill_cart, order_service):
    fill_cart(buyer, [(scarce_product, 2)])
    return order_service.checkout(CheckoutDTO(buyer_id=buyer.id))[0]


class TestReserve:
    def test_reserved_lines_conflict_on_second_reserve(
        self, buyer, product, fill_cart, ledger, pending_order
    ):
        cart = fill_cart(buyer, [(product, 1)])
        lines = list(cart.items.all())
        CartItem.objects.filter(id__in=[line.id for line in lines]).delete()

        with pytest.raises(ReservationConflict):
            ledger.reserve(pending_order, lines)

    def test_checkout_records_cart_changed(self, pending_order, buyer):
        events = OutboxEvent.objects.filter(event_type="CartChanged").order_by("created_at", "id")
        assert [e.payload["reason"] for e in events] == ["reserved"]
        assert events[0].payload["buyer_id"] == str(buyer.id)


class TestRestore:
    def test_all_lots_come_back(self, pending_order, buyer, product, ledger, order_service):
        order = order_service.get_order(str(pending_order.id))

        restored = ledger.restore(order)

        assert [(r.reserved, r.restored) for r in restored] == [(2, 2)]
        assert _quantity(buyer, product) == 2

    def test_merges_into_existing_line(
        self, pending_order, buyer, product, fill_cart, order_service
    ):
        fill_cart(buyer, [(product, 1)])

        order_service.cancel_pending(pending_order.id, actor_id=buyer.id)

        assert CartItem.objects.filter(cart__buyer=buyer, product=product).count() == 1
        assert _quantity(buyer, product) == 3

    def test_merge_is_capped_at_stock(
        self, scarce_order, buyer, scarce_product, fill_cart, order_service
    ):
        fill_cart(buyer, [(scarce_product, 1)])

        order_service.cancel_pending(scarce_order.id, actor_id=buyer.id)

        assert _quantity(buyer, scarce_product) == 2
        item = ReservationItem.objects.get(reservation__order=scarce_order)
        assert item.quantity == 2
        assert item.restored_quantity == 1

    def test_existing_line_is_never_reduced(
        self, scarce_order, buyer, scarce_product, fill_cart, order_service
    ):
        fill_cart(buyer, [(scarce_product, 3)])

        order_service.cancel_pending(scarce_order.id, actor_id=buyer.id)

        assert _quantity(buyer, scarce_product) == 3
        item = ReservationItem.objects.get(reservation__order=scarce_order)
        assert item.restored_quantity == 0

    def test_restore_is_one_shot(self, pending_order, buyer, product, ledger, order_service):
        order = order_service.get_order(str(pending_order.id))
        ledger.restore(order)

        assert ledger.restore(order) == []
        assert _quantity(buyer, product) == 2

    def test_records_cart_changed(self, pending_order, buyer, order_service):
        order_service.cancel_pending(pending_order.id, actor_id=buyer.id)
        events = OutboxEvent.objects.filter(event_type="CartChanged").order_by("created_at", "id")
        reasons = [e.payload["reason"] for e in events]
        assert reasons == ["reserved", "restored"]


class TestConsume:
    def test_consumed_reservation_cannot_be_restored(self, confirmed_order, buyer, ledger):
        assert confirmed_order.reservation.status == ReservationStatus.CONSUMED
        assert ledger.consume(confirmed_order) is False
        assert ledger.restore(confirmed_order) == []
        assert CartItem.objects.filter(cart__buyer=buyer).count() == 0


class TestCartCount:
    def test_counts_lines(self, buyer, product, make_product, fill_cart, ledger):
        fill_cart(buyer, [(product, 3), (make_product(), 1)])
        assert ledger.cart_count(buyer.id) == 2

    def test_empty_cart(self, buyer, ledger):
        assert ledger.cart_count(buyer.id) == 0
