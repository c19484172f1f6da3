"""Unit tests for the async REST client and its error mapping."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from sync_client.api import MarketplaceApi
from sync_client.exceptions import (
    ApiError,
    InvalidTransition,
    NotFound,
    OrderExpired,
    PaymentVerificationFailure,
    PermissionDenied,
    RetryIneligible,
    ServiceUnavailable,
    error_from_response,
)
from sync_client.settings import ClientSettings

pytestmark = pytest.mark.unit

API_URL = "https://api.test/api/v1"


@pytest.fixture()
async def api():
    client = MarketplaceApi(ClientSettings(api_url=API_URL, access_token="access-123"))
    yield client
    await client.aclose()


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("status", "code", "expected"),
        [
            (400, "invalid_transition", InvalidTransition),
            (400, "retry_ineligible", RetryIneligible),
            (409, "order_expired", OrderExpired),
            (403, "not_participant", PermissionDenied),
            (503, "carrier_unavailable", ServiceUnavailable),
        ],
    )
    def test_code_wins(self, status, code, expected):
        response = httpx.Response(status, json={"detail": "nope", "code": code})
        error = error_from_response(response)
        assert type(error) is expected
        assert error.detail == "nope"
        assert error.status_code == status

    @pytest.mark.parametrize(
        ("status", "expected"),
        [(401, PermissionDenied), (404, NotFound), (402, PaymentVerificationFailure), (500, ApiError)],
    )
    def test_status_fallback(self, status, expected):
        error = error_from_response(httpx.Response(status, text="<html>oops</html>"))
        assert type(error) is expected
        assert error.code == ""


class TestRequests:
    @respx.mock
    async def test_get_order_sends_bearer(self, api):
        route = respx.get(f"{API_URL}/orders/abc/").mock(
            return_value=httpx.Response(200, json={"orderId": "abc", "version": 2})
        )

        body = await api.get_order("abc")

        assert body["version"] == 2
        assert route.calls.last.request.headers["Authorization"] == "Bearer access-123"

    @respx.mock
    async def test_list_passes_role_and_page(self, api):
        route = respx.get(f"{API_URL}/orders/").mock(
            return_value=httpx.Response(200, json={"results": []})
        )

        await api.list_orders("seller", page=3)

        params = route.calls.last.request.url.params
        assert params["role"] == "seller"
        assert params["page"] == "3"

    @respx.mock
    async def test_verify_payment_body(self, api):
        route = respx.post(f"{API_URL}/orders/verify-payment/").mock(
            return_value=httpx.Response(200, json={"orderId": "abc"})
        )

        await api.verify_payment("abc", "pay_1", "sig")

        assert json.loads(route.calls.last.request.content) == {
            "order_id": "abc",
            "payment_id": "pay_1",
            "signature": "sig",
        }

    @respx.mock
    async def test_checkout_idempotency_header(self, api):
        route = respx.post(f"{API_URL}/orders/cart-checkout/").mock(
            return_value=httpx.Response(201, json={"orders": []})
        )

        await api.checkout(idempotency_key="cart-42")

        assert route.calls.last.request.headers["Idempotency-Key"] == "cart-42"

    @respx.mock
    async def test_error_body_is_raised(self, api):
        respx.post(f"{API_URL}/orders/abc/retry-payment/").mock(
            return_value=httpx.Response(
                400,
                json={"detail": "The payment window has closed.", "code": "retry_ineligible"},
            )
        )

        with pytest.raises(RetryIneligible, match="window"):
            await api.retry_payment("abc")

    @respx.mock
    async def test_unreachable_api(self, api):
        respx.get(f"{API_URL}/cart/count/").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ServiceUnavailable) as exc_info:
            await api.cart_count()

        assert exc_info.value.code == "unreachable"

    @respx.mock
    async def test_cart_count(self, api):
        respx.get(f"{API_URL}/cart/count/").mock(
            return_value=httpx.Response(200, json={"count": 4})
        )
        assert await api.cart_count() == 4
