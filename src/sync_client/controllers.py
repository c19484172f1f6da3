"""View controllers a UI binds to.

Each controller owns one view's lifecycle: ``mount`` registers topic
interest and loads the authoritative state, ``unmount`` drops the
interest.  Pushes and REST responses both land in the shared
``ProjectionCache``; responses that lost the race to a newer request for
the same resource are discarded.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import structlog

from shared.realtime import protocol
from shared.realtime.protocol import ChannelMessage
from shared.realtime.topics import order_list_topic, order_topic, user_topic
from sync_client.api import MarketplaceApi
from sync_client.channel import ConnectionManager, Subscription
from sync_client.countdown import PaymentCountdown
from sync_client.exceptions import ServiceUnavailable
from sync_client.projection import ListPage, ProjectionCache, RequestGenerations, Snapshot
from sync_client.settings import ClientSettings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SyncOutcome:
    """Result of a tracking sync; ``order`` is cached data when ``sync_failed``."""

    order: Optional[Snapshot]
    sync_failed: bool
    timed_out: bool = False


@dataclass(frozen=True)
class RetryCheck:
    can_retry: bool
    message: str = ""


class CartCounter:
    """Current cart item count for cart-display collaborators."""

    def __init__(self, user_id: str, api: MarketplaceApi, connection: ConnectionManager) -> None:
        self.user_id = str(user_id)
        self.count: Optional[int] = None
        self._api = api
        self._connection = connection
        self._generations = RequestGenerations()
        self._subscription: Optional[Subscription] = None
        self._listeners: List[Callable[[int], None]] = []

    def add_listener(self, listener: Callable[[int], None]) -> None:
        self._listeners.append(listener)

    async def mount(self) -> None:
        self._subscription = self._connection.subscribe(user_topic(self.user_id), self._on_push)
        self._connection.add_resync_listener(self.refresh)
        await self.refresh()

    def unmount(self) -> None:
        if self._subscription is not None:
            self._connection.unsubscribe(self._subscription)
            self._subscription = None
        self._connection.remove_resync_listener(self.refresh)

    async def refresh(self) -> None:
        generation = self._generations.begin("count")
        try:
            count = await self._api.cart_count()
        except BaseException:
            self._generations.abandon("count", generation)
            raise
        if self._generations.complete("count", generation):
            self._set(count)

    def _on_push(self, message: ChannelMessage) -> None:
        if message.event == protocol.CART_UPDATED and message.data is not None:
            # A push is newer than any request still in flight.
            self._generations.complete("count", self._generations.begin("count"))
            self._set(int(message.data["count"]))

    def _set(self, count: int) -> None:
        if count == self.count:
            return
        self.count = count
        for listener in list(self._listeners):
            listener(count)


class OrderDetailController:
    def __init__(
        self,
        order_id: str,
        api: MarketplaceApi,
        connection: ConnectionManager,
        cache: ProjectionCache,
        settings: ClientSettings,
        cart: Optional[CartCounter] = None,
    ) -> None:
        self.order_id = str(order_id)
        self._api = api
        self._connection = connection
        self._cache = cache
        self._settings = settings
        self._cart = cart
        self._generations = RequestGenerations()
        self._subscription: Optional[Subscription] = None
        self._key = f"order:{self.order_id}"

    @property
    def order(self) -> Optional[Snapshot]:
        return self._cache.get(self.order_id)

    @property
    def pending(self) -> bool:
        """A request for this order is in flight; render the loading state."""
        return self._generations.in_flight(self._key)

    async def mount(self) -> None:
        self._subscription = self._connection.subscribe(order_topic(self.order_id), self._on_push)
        self._connection.add_resync_listener(self.refresh)
        await self.refresh()

    def unmount(self) -> None:
        if self._subscription is not None:
            self._connection.unsubscribe(self._subscription)
            self._subscription = None
        self._connection.remove_resync_listener(self.refresh)

    def _on_push(self, message: ChannelMessage) -> None:
        if message.event == protocol.ORDER_UPDATED and message.data:
            self._cache.apply_snapshot(message.data)

    async def _load(self, request: Callable[[], Any], pick: Callable[[Any], Snapshot]) -> Any:
        generation = self._generations.begin(self._key)
        try:
            body = await request()
        except BaseException:
            self._generations.abandon(self._key, generation)
            raise
        if self._generations.complete(self._key, generation):
            self._cache.apply_snapshot(pick(body))
        return body

    async def refresh(self) -> Optional[Snapshot]:
        await self._load(lambda: self._api.get_order(self.order_id), lambda body: body)
        return self.order

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def sync_tracking(self) -> SyncOutcome:
        """Ask the server to reconcile with the carrier.

        Never raises for carrier trouble: on timeout or an unreachable
        service the cached order is returned with ``sync_failed``.
        """
        try:
            body = await asyncio.wait_for(
                self._load(
                    lambda: self._api.sync_tracking(self.order_id),
                    lambda body: body["order"],
                ),
                timeout=self._settings.sync_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("order.sync_timed_out", order_id=self.order_id)
            return SyncOutcome(order=self.order, sync_failed=True, timed_out=True)
        except ServiceUnavailable as exc:
            logger.warning("order.sync_unavailable", order_id=self.order_id, error=str(exc))
            return SyncOutcome(order=self.order, sync_failed=True)
        return SyncOutcome(order=self.order, sync_failed=bool(body.get("syncFailed")))

    # ------------------------------------------------------------------
    # Seller actions
    # ------------------------------------------------------------------

    async def generate_label(self) -> Optional[Snapshot]:
        await self._load(lambda: self._api.generate_label(self.order_id), lambda body: body)
        return self.order

    async def transition(self, status: str, note: str = "") -> Optional[Snapshot]:
        await self._load(lambda: self._api.transition(self.order_id, status, note), lambda body: body)
        return self.order

    # ------------------------------------------------------------------
    # Buyer actions
    # ------------------------------------------------------------------

    def countdown(self) -> Optional[PaymentCountdown]:
        order = self.order
        return PaymentCountdown.from_snapshot(order) if order else None

    async def can_retry_payment(self) -> RetryCheck:
        body = await self._api.can_retry_payment(self.order_id)
        return RetryCheck(bool(body["canRetry"]), body.get("message", ""))

    async def retry_payment(self) -> Dict[str, Any]:
        """Open a processor session; ``RetryIneligible`` carries the reason."""
        return await self._api.retry_payment(self.order_id)

    async def verify_payment(self, payment_id: str, signature: str) -> Optional[Snapshot]:
        """Confirm a processor success callback.

        ``PaymentVerificationFailure`` propagates: the buyer must choose
        between retrying and cancelling.
        """
        await self._load(
            lambda: self._api.verify_payment(self.order_id, payment_id, signature),
            lambda body: body,
        )
        await self._recount_cart()
        return self.order

    async def abort_payment(self) -> Optional[Snapshot]:
        await self._load(lambda: self._api.abort_payment(self.order_id), lambda body: body)
        await self._recount_cart()
        return self.order

    async def cancel_pending(self) -> Optional[Snapshot]:
        await self._load(lambda: self._api.cancel_pending(self.order_id), lambda body: body)
        await self._recount_cart()
        return self.order

    async def request_cancellation(self, reason: str = "") -> Optional[Snapshot]:
        await self._load(
            lambda: self._api.request_cancellation(self.order_id, reason),
            lambda body: body,
        )
        return self.order

    async def _recount_cart(self) -> None:
        if self._cart is not None:
            await self._cart.refresh()


class OrderListController:
    """One role's paginated order list; pushes only invalidate it."""

    def __init__(
        self,
        user_id: str,
        role: str,
        api: MarketplaceApi,
        connection: ConnectionManager,
        cache: ProjectionCache,
    ) -> None:
        self.user_id = str(user_id)
        self.role = role
        self.page_number = 1
        self._api = api
        self._connection = connection
        self._cache = cache
        self._generations = RequestGenerations()
        self._subscription: Optional[Subscription] = None
        self._topic = order_list_topic(self.user_id, role)

    @property
    def page(self) -> Optional[ListPage]:
        return self._cache.list_page(self.user_id, self.role)

    @property
    def pending(self) -> bool:
        return self._generations.in_flight(self._topic)

    async def mount(self, page: int = 1) -> None:
        self.page_number = page
        self._subscription = self._connection.subscribe(self._topic, self._on_push)
        self._connection.add_resync_listener(self.refresh)
        await self.refresh()

    def unmount(self) -> None:
        if self._subscription is not None:
            self._connection.unsubscribe(self._subscription)
            self._subscription = None
        self._connection.remove_resync_listener(self.refresh)

    async def _on_push(self, message: ChannelMessage) -> None:
        if message.event == protocol.ORDERS_LIST_UPDATED:
            self._cache.invalidate_list(self.user_id, self.role)
            await self.refresh()

    async def go_to(self, page: int) -> Optional[ListPage]:
        self.page_number = page
        return await self.refresh()

    async def refresh(self) -> Optional[ListPage]:
        generation = self._generations.begin(self._topic)
        try:
            body = await self._api.list_orders(self.role, self.page_number)
        except BaseException:
            self._generations.abandon(self._topic, generation)
            raise
        if self._generations.complete(self._topic, generation):
            self._cache.store_list(self.user_id, self.role, body)
        return self.page
