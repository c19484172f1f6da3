"""Unit tests for the view controllers.

Covers:
- Detail: mount loads the snapshot; pushes replace it; stale responses
  and older versions never overwrite newer state.
- Tracking sync degrades to cached data on timeout or outage.
- Buyer actions refresh the cart count.
- Cart counter: pushes beat requests already in flight.
- List: pushes only invalidate, then the current page is refetched.
"""

from __future__ import annotations

import asyncio

import pytest

from shared.realtime.protocol import ChannelMessage
from sync_client.channel import ConnectionManager
from sync_client.controllers import CartCounter, OrderDetailController, OrderListController
from sync_client.exceptions import PaymentVerificationFailure, ServiceUnavailable
from sync_client.projection import ProjectionCache
from sync_client.settings import ClientSettings

pytestmark = pytest.mark.unit


def snapshot(version, **fields):
    body = {"orderId": "abc", "version": version, "status": "Packed", "trackingSyncFailed": False}
    body.update(fields)
    return body


@pytest.fixture()
def client_settings():
    return ClientSettings(sync_timeout=0.05, reconnect_base_delay=0)


@pytest.fixture()
def connection(make_transport, client_settings):
    return ConnectionManager(make_transport(), client_settings)


@pytest.fixture()
def cache():
    return ProjectionCache()


@pytest.fixture()
def detail(fake_api, connection, cache, client_settings):
    fake_api.orders["abc"] = snapshot(1)
    return OrderDetailController("abc", fake_api, connection, cache, client_settings)


class TestOrderDetail:
    async def test_mount_loads_and_subscribes(self, detail, connection):
        await detail.mount()

        assert detail.order["version"] == 1
        assert "order:abc" in connection.topics

    async def test_unmount_drops_interest(self, detail, connection):
        await detail.mount()
        detail.unmount()
        assert connection.topics == set()

    async def test_push_replaces_snapshot(self, detail):
        await detail.mount()

        detail._on_push(ChannelMessage("orderUpdated", "order:abc", snapshot(2, status="Shipped")))

        assert detail.order["status"] == "Shipped"

    async def test_older_push_is_ignored(self, detail):
        await detail.mount()
        detail._on_push(ChannelMessage("orderUpdated", "order:abc", snapshot(3, status="Shipped")))

        detail._on_push(ChannelMessage("orderUpdated", "order:abc", snapshot(2, status="Packed")))

        assert detail.order["status"] == "Shipped"

    async def test_stale_response_is_dropped(self, detail, fake_api):
        fake_api.hold()
        fake_api.orders["abc"] = snapshot(4, trackingSyncFailed=True)
        first = asyncio.create_task(detail.refresh())
        await asyncio.sleep(0)
        fake_api.orders["abc"] = snapshot(4, trackingSyncFailed=False)
        second = asyncio.create_task(detail.refresh())
        await asyncio.sleep(0)
        assert detail.pending

        fake_api.release(1)
        await second
        fake_api.release(0)
        await first

        assert detail.order["trackingSyncFailed"] is False
        assert not detail.pending

    async def test_sync_success(self, detail, fake_api):
        fake_api.sync_bodies.append(
            {"order": snapshot(2, status="In Transit"), "syncFailed": False, "appended": ["In Transit"]}
        )

        outcome = await detail.sync_tracking()

        assert outcome.sync_failed is False
        assert outcome.order["status"] == "In Transit"

    async def test_sync_reported_failure_keeps_cached_order(self, detail, fake_api):
        await detail.mount()
        fake_api.sync_bodies.append({"order": snapshot(1), "syncFailed": True, "appended": []})

        outcome = await detail.sync_tracking()

        assert outcome.sync_failed
        assert outcome.order["version"] == 1

    async def test_sync_timeout_returns_cached_order(self, detail, fake_api):
        await detail.mount()
        fake_api.sync_bodies.append("hang")

        outcome = await detail.sync_tracking()

        assert outcome.sync_failed and outcome.timed_out
        assert outcome.order["version"] == 1
        assert not detail.pending

    async def test_sync_outage_returns_cached_order(self, detail, fake_api):
        await detail.mount()
        fake_api.errors["sync_tracking"] = ServiceUnavailable("down", code="unreachable")

        outcome = await detail.sync_tracking()

        assert outcome.sync_failed and not outcome.timed_out
        assert outcome.order is not None

    async def test_verification_failure_propagates(self, detail, fake_api):
        fake_api.errors["verify_payment"] = PaymentVerificationFailure("bad signature")

        with pytest.raises(PaymentVerificationFailure):
            await detail.verify_payment("pay_1", "sig")
        assert not detail.pending

    async def test_cancel_pending_recounts_cart(
        self, fake_api, connection, cache, client_settings
    ):
        fake_api.orders["abc"] = snapshot(5, status="Cancelled")
        fake_api.count = 2
        cart = CartCounter("7", fake_api, connection)
        controller = OrderDetailController(
            "abc", fake_api, connection, cache, client_settings, cart=cart
        )

        await controller.cancel_pending()

        assert controller.order["status"] == "Cancelled"
        assert cart.count == 2

    async def test_retry_check(self, detail):
        check = await detail.can_retry_payment()
        assert check.can_retry is False
        assert check.message == "closed"

    async def test_countdown_only_while_unpaid(self, detail):
        await detail.mount()
        assert detail.countdown() is None


class TestCartCounter:
    async def test_mount_and_push(self, fake_api, connection):
        fake_api.count = 1
        counter = CartCounter("7", fake_api, connection)
        seen = []
        counter.add_listener(seen.append)

        await counter.mount()
        counter._on_push(ChannelMessage("cartUpdated", "user:7", {"count": 3}))

        assert counter.count == 3
        assert seen == [1, 3]
        assert "user:7" in connection.topics

    async def test_push_beats_request_in_flight(self, fake_api, connection):
        counter = CartCounter("7", fake_api, connection)
        fake_api.hold()
        fake_api.count = 1
        refresh = asyncio.create_task(counter.refresh())
        await asyncio.sleep(0)

        counter._on_push(ChannelMessage("cartUpdated", "user:7", {"count": 4}))
        fake_api.release(0)
        await refresh

        assert counter.count == 4


class TestOrderList:
    async def test_mount_stores_page(self, fake_api, connection, cache):
        controller = OrderListController("7", "seller", fake_api, connection, cache)

        await controller.mount()

        assert controller.page.rows == [{"orderId": "abc"}]
        assert fake_api.list_calls == [("seller", 1)]
        assert "orderList:7:seller" in connection.topics

    async def test_push_refetches_current_page(self, fake_api, connection, cache):
        controller = OrderListController("7", "buyer", fake_api, connection, cache)
        await controller.mount(page=2)

        await controller._on_push(ChannelMessage("ordersListUpdated", "orderList:7:buyer"))

        assert fake_api.list_calls == [("buyer", 2), ("buyer", 2)]
        assert controller.page.stale is False

    async def test_go_to(self, fake_api, connection, cache):
        controller = OrderListController("7", "buyer", fake_api, connection, cache)
        await controller.mount()

        page = await controller.go_to(2)

        assert page.page == 2
