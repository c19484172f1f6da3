from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Tuple

import pytest

from django.contrib.auth import get_user_model
from django.core.cache import cache

from rest_framework.test import APIClient

from modules.cart.models import Cart, CartItem
from modules.orders.dtos import CheckoutDTO
from modules.orders.services import build_order_service
from modules.payments.gateway import reset_gateway, set_gateway
from modules.payments.gateway.fake_adapter import FakeGateway
from modules.payments.services import build_payment_coordinator
from modules.products.models import Product, ProductStatus
from modules.realtime.broadcaster import (
    InMemoryBroadcaster,
    reset_broadcaster,
    set_broadcaster,
)
from modules.shipping.carrier import reset_carrier, set_carrier
from modules.shipping.carrier.fake_adapter import FakeCarrier

User = get_user_model()


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def gateway():
    """Fresh fake payment processor for every test."""
    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture(autouse=True)
def carrier():
    """Fresh fake carrier for every test."""
    fake = FakeCarrier()
    set_carrier(fake)
    yield fake
    reset_carrier()


@pytest.fixture(autouse=True)
def broadcaster():
    """Records every push message instead of sending it to Redis."""
    memory = InMemoryBroadcaster()
    set_broadcaster(memory)
    yield memory
    memory.clear()
    reset_broadcaster()


@pytest.fixture(autouse=True)
def _clear_cache():
    """Throttle counters live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


# ---------------------------------------------------------------------------
# Marketplace fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def buyer():
    return User.objects.create_user(username="asha", password="testpass123")


@pytest.fixture()
def seller():
    return User.objects.create_user(username="kirana-traders", password="testpass123")


@pytest.fixture()
def other_seller():
    return User.objects.create_user(username="loom-works", password="testpass123")


@pytest.fixture()
def stranger():
    return User.objects.create_user(username="stranger", password="testpass123")


@pytest.fixture()
def make_product(seller):
    counter = {"n": 0}

    def _make(
        owner=None,
        price: str = "10.00",
        lot_size: int = 1,
        stock: int = 100,
        status: str = ProductStatus.ACTIVE,
    ) -> Product:
        counter["n"] += 1
        return Product.objects.create(
            seller=owner or seller,
            sku=f"sku-{counter['n']:03d}",
            name=f"Product {counter['n']}",
            price=Decimal(price),
            lot_size=lot_size,
            stock_quantity=stock,
            status=status,
        )

    return _make


@pytest.fixture()
def product(make_product):
    """Rice sold in lots of 5 units at 10.00 per unit."""
    return make_product(price="10.00", lot_size=5, stock=50)


@pytest.fixture()
def fill_cart():
    def _fill(user, lines: Iterable[Tuple[Product, int]]) -> Cart:
        cart, _ = Cart.objects.get_or_create(buyer=user)
        for item, quantity in lines:
            CartItem.objects.create(
                cart=cart, product=item, lot_size=item.lot_size, quantity=quantity
            )
        return cart

    return _fill


@pytest.fixture()
def order_service():
    return build_order_service()


@pytest.fixture()
def coordinator():
    return build_payment_coordinator()


@pytest.fixture()
def pending_order(buyer, product, fill_cart, order_service):
    """A Payment Pending order holding 2 lots of ``product``."""
    fill_cart(buyer, [(product, 2)])
    return order_service.checkout(CheckoutDTO(buyer_id=buyer.id))[0]


@pytest.fixture()
def pay(coordinator, gateway, buyer):
    """Open a session and verify a captured payment for an order."""

    def _pay(order, captured_at=None):
        session = coordinator.open_session(order.id)
        payment_id, signature = gateway.simulate_payment(
            session.payment_order_id, captured_at=captured_at
        )
        return coordinator.verify(order.id, payment_id, signature, user_id=buyer.id)

    return _pay


@pytest.fixture()
def confirmed_order(pending_order, pay):
    return pay(pending_order)


@pytest.fixture()
def buyer_client(buyer):
    client = APIClient()
    client.force_authenticate(user=buyer)
    return client


@pytest.fixture()
def seller_client(seller):
    client = APIClient()
    client.force_authenticate(user=seller)
    return client
