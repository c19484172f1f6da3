"""Integration tests for the cart endpoints."""

from __future__ import annotations

import pytest

pytestmark = pytest.mark.integration


class TestCartApi:
    def test_lists_lines(self, buyer_client, buyer, product, fill_cart):
        fill_cart(buyer, [(product, 3)])

        response = buyer_client.get("/api/v1/cart/")

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        line = body["items"][0]
        assert line["productId"] == str(product.id)
        assert line["quantity"] == 3
        assert line["lotSize"] == 5

    def test_count(self, buyer_client, buyer, product, make_product, fill_cart):
        fill_cart(buyer, [(product, 1), (make_product(), 2)])
        assert buyer_client.get("/api/v1/cart/count/").json() == {"count": 2}

    def test_checkout_empties_the_cart(self, buyer_client, pending_order):
        assert buyer_client.get("/api/v1/cart/").json() == {"items": [], "count": 0}

    def test_other_buyers_cart_is_invisible(self, seller_client, buyer, product, fill_cart):
        fill_cart(buyer, [(product, 1)])
        assert seller_client.get("/api/v1/cart/count/").json() == {"count": 0}

    def test_requires_authentication(self, api_client):
        assert api_client.get("/api/v1/cart/").status_code == 401
