"""Order service layer (Use Cases).

Orchestrates checkout (cart and buy now), seller fulfilment,
cancellation and the expiration sweep.  All write operations are
atomic: the service defines the unit-of-work boundary and takes the
order row lock before reading the status it is about to change.

Business rules enforced:
- Products must be active and have stock for every requested lot.
- Stock is reserved at checkout (SELECT FOR UPDATE, sorted by PK) and
  released when the order is cancelled.
- Cart lines move into a reservation at checkout and come back to the
  cart when an unpaid order is cancelled or expires.
- Status transitions are validated against the state machine and each
  accepted one is recorded in the history.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

import structlog
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from modules.cart.exceptions import EmptyCart
from modules.orders.constants import (
    CANCELLATION_REASON_EXPIRED,
    EXPIRABLE_STATES,
    RETRYABLE_PAYMENT_STATES,
    OrderStatus,
)
from modules.orders.events import OrderCancelled, OrderCarrierUpdated, OrderCreated
from modules.orders.exceptions import (
    ActionNotAllowed,
    InactiveProduct,
    InsufficientStock,
    InvalidTransition,
    NotOrderParticipant,
    OrderNotFound,
)
from modules.orders.transitions import apply_transition
from modules.shipping.carrier.port import ShipmentRequest

if TYPE_CHECKING:
    from modules.cart.ledger import CartReservationLedger
    from modules.cart.models import CartItem
    from modules.cart.repositories.interfaces import ICartRepository
    from modules.orders.dtos import BuyNowDTO, CheckoutDTO, TransitionOrderDTO
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.products.models import Product
    from modules.products.repositories.interfaces import IProductRepository
    from modules.shipping.carrier.port import CarrierPort

logger = structlog.get_logger(__name__)

# Targets a buyer may request through the generic transition endpoint.
BUYER_REQUESTABLE = frozenset(
    {OrderStatus.CANCELLATION_REQUESTED, OrderStatus.RETURN_REQUESTED}
)

# Seller states with no dedicated trigger.  Fulfilment goes through label
# generation and shipping scans through carrier reconciliation.
SELLER_REQUESTABLE = frozenset(
    {
        OrderStatus.CANCELLATION_REQUESTED,
        OrderStatus.COMPLETED,
        OrderStatus.DELIVERY_FAILED,
        OrderStatus.RTO_INITIATED,
        OrderStatus.RTO_DELIVERED,
        OrderStatus.RETURN_APPROVED,
        OrderStatus.RETURN_REJECTED,
        OrderStatus.RETURNED,
        OrderStatus.REFUNDED,
    }
)


def payment_deadline(order: Order) -> datetime:
    """Latest capture time at which a payment still beats the expiration."""
    grace = timedelta(seconds=settings.PAYMENT_EXPIRY_GRACE_SECONDS)
    return order.expires_at + grace


class OrderService:
    """Application service for Order use-cases.

    Receives repositories and collaborators via constructor injection (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        product_repository: IProductRepository,
        cart_repository: ICartRepository,
        ledger: CartReservationLedger,
        carrier: CarrierPort,
    ) -> None:
        self._order_repo = order_repository
        self._product_repo = product_repository
        self._cart_repo = cart_repository
        self._ledger = ledger
        self._carrier = carrier

    @property
    def ledger(self) -> CartReservationLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    @transaction.atomic
    def checkout(self, dto: CheckoutDTO) -> List[Order]:
        """Turn the buyer's cart into one Payment Pending order per seller.

        Steps:
        1. Return the orders of a previous checkout with the same
           idempotency key, if any.
        2. Lock cart lines, then products (sorted by PK).
        3. Validate every product is active and has stock; deduct stock.
        4. Per seller: create the order, record the first history entry,
           move the seller's lines into a cart reservation.

        Raises:
            EmptyCart: the cart has no lines.
            InactiveProduct: a product is inactive.
            InsufficientStock: a product cannot cover the requested lots.
        """
        log = logger.bind(buyer_id=dto.buyer_id)
        log.info("order.checkout_started")

        if dto.idempotency_key:
            existing = self._order_repo.get_by_idempotency_key(
                dto.idempotency_key, dto.buyer_id
            )
            if existing:
                log.info(
                    "order.idempotency_hit",
                    order_ids=[str(o.id) for o in existing],
                    key=dto.idempotency_key,
                )
                return existing

        cart = self._cart_repo.get_or_create_for_buyer(dto.buyer_id)
        lines = self._cart_repo.lock_items(cart)
        if not lines:
            raise EmptyCart("Cart is empty.")

        products = self._product_repo.lock_many(line.product_id for line in lines)
        by_seller: Dict[int, List[CartItem]] = defaultdict(list)
        for line in lines:
            product = products[line.product_id]
            self._take_stock(product, line.quantity, line.lot_size, log)
            by_seller[product.seller_id].append(line)

        orders = []
        for seller_id in sorted(by_seller):
            seller_lines = by_seller[seller_id]
            order = self._open_order(
                dto.buyer_id,
                seller_id,
                dto.idempotency_key,
                [
                    {
                        "product_id": line.product_id,
                        "quantity": line.quantity,
                        "lot_size": line.lot_size,
                        "unit_price": products[line.product_id].price,
                    }
                    for line in seller_lines
                ],
            )
            self._ledger.reserve(order, seller_lines)
            self._order_repo.save(order)
            orders.append(order)

        log.info("order.checkout_completed", order_ids=[str(o.id) for o in orders])
        return [self._order_repo.get_by_id(str(o.id)) or o for o in orders]

    @transaction.atomic
    def buy_now(self, dto: BuyNowDTO) -> Order:
        """Order one product without going through the cart.

        Stock and the reservation follow the checkout rules; the
        reservation holds a line that never sat in the cart, and an
        unpaid cancellation merges it into the cart like any other.

        Raises:
            InactiveProduct: the product is missing or inactive.
            InsufficientStock: stock cannot cover the requested lots.
        """
        log = logger.bind(buyer_id=dto.buyer_id, product_id=str(dto.product_id))
        log.info("order.buy_now_started", quantity=dto.quantity)

        if dto.idempotency_key:
            existing = self._order_repo.get_by_idempotency_key(
                dto.idempotency_key, dto.buyer_id
            )
            if existing:
                log.info("order.idempotency_hit", order_id=str(existing[0].id))
                return existing[0]

        product = self._product_repo.lock_many([dto.product_id]).get(dto.product_id)
        if product is None:
            raise InactiveProduct(f"Product {dto.product_id} is not available.")
        self._take_stock(product, dto.quantity, product.lot_size, log)

        order = self._open_order(
            dto.buyer_id,
            product.seller_id,
            dto.idempotency_key,
            [
                {
                    "product_id": product.id,
                    "quantity": dto.quantity,
                    "lot_size": product.lot_size,
                    "unit_price": product.price,
                }
            ],
        )
        self._ledger.reserve_direct(order, product.id, product.lot_size, dto.quantity)
        self._order_repo.save(order)

        log.info("order.buy_now_completed", order_id=str(order.id))
        return self._reload(order.id)

    @staticmethod
    def _take_stock(product: Product, lots: int, lot_size: int, log: Any) -> None:
        if not product.is_active:
            raise InactiveProduct(f"Product {product.sku} is inactive.")
        units = lots * lot_size
        if product.stock_quantity < units:
            raise InsufficientStock(
                f"Product {product.sku}: requested {lots} lots of "
                f"{lot_size}, available {product.available_lots}."
            )
        product.stock_quantity -= units
        product.save(update_fields=["stock_quantity", "updated_at"])
        log.info(
            "order.stock_reserved",
            product_id=str(product.id),
            units=units,
            remaining=product.stock_quantity,
        )

    def _open_order(
        self,
        buyer_id: int,
        seller_id: int,
        idempotency_key: Optional[str],
        items: List[Dict[str, Any]],
    ) -> Order:
        order = self._order_repo.create(
            {
                "buyer_id": buyer_id,
                "seller_id": seller_id,
                "idempotency_key": idempotency_key,
                "items": items,
            }
        )
        self._order_repo.add_history(
            order_id=order.id,
            status=OrderStatus.PAYMENT_PENDING,
            note="Order placed",
            user_id=buyer_id,
        )
        order.add_domain_event(
            OrderCreated(
                aggregate_id=order.id,
                buyer_id=str(buyer_id),
                seller_id=str(seller_id),
            )
        )
        return order

    # ------------------------------------------------------------------
    # Seller fulfilment
    # ------------------------------------------------------------------

    @transaction.atomic
    def generate_label(self, order_id: UUID, actor_id: int) -> Order:
        """Book the shipment and move the order to Packed.

        From Confirmed the order passes through Processing first, so the
        history gets one Processing and one Packed entry.  An AWB that is
        already assigned is reused instead of booking a second shipment.

        Raises:
            OrderNotFound: order does not exist.
            ActionNotAllowed: the actor is not the seller.
            InvalidTransition: order is not Confirmed or Processing.
            ShipmentNotCreated / CarrierUnavailable: carrier booking failed;
                the order is left untouched.
        """
        order = self._lock(order_id)
        self._require_seller(order, actor_id)
        log = logger.bind(order_id=str(order_id), current_status=order.status)

        if order.status not in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING):
            log.warning("order.label_not_allowed")
            raise InvalidTransition(order.status, OrderStatus.PACKED)

        if not order.awb_code:
            items = list(order.items.all())
            shipment = self._carrier.create_shipment(
                ShipmentRequest(
                    order_id=str(order.id),
                    order_number=order.order_number,
                    total_price=str(order.total_price),
                    units=sum(item.units for item in items),
                    line_items=[
                        {
                            "sku": item.product.sku,
                            "name": item.product.name,
                            "units": item.units,
                            "selling_price": str(item.unit_price),
                        }
                        for item in items
                    ],
                )
            )
            order.shipment_id = shipment.shipment_id
            order.awb_code = shipment.awb_code
            order.courier_name = shipment.courier_name
            order.tracking_url = shipment.tracking_url
            order.scheduled_pickup_date = shipment.scheduled_pickup_date
            order.estimated_delivery_date = shipment.estimated_delivery_date
            order.add_domain_event(
                OrderCarrierUpdated(
                    aggregate_id=order.id,
                    awb_code=shipment.awb_code,
                    courier_name=shipment.courier_name,
                )
            )
            log.info("order.shipment_booked", awb_code=shipment.awb_code)

        if order.status == OrderStatus.CONFIRMED:
            apply_transition(
                self._order_repo,
                order,
                OrderStatus.PROCESSING,
                note="Seller started processing",
                actor_id=actor_id,
            )
        apply_transition(
            self._order_repo,
            order,
            OrderStatus.PACKED,
            note=f"Shipping label generated (AWB {order.awb_code})",
            actor_id=actor_id,
        )
        self._order_repo.save(order)

        log.info("order.label_generated", awb_code=order.awb_code)
        return self._reload(order_id)

    # ------------------------------------------------------------------
    # Generic transitions
    # ------------------------------------------------------------------

    @transaction.atomic
    def transition(self, dto: TransitionOrderDTO) -> Order:
        """Apply a buyer- or seller-requested status change.

        A buyer's cancellation request on an unpaid order cancels it at
        once, the same way ``request_cancellation`` does.

        Raises:
            OrderNotFound: order does not exist.
            NotOrderParticipant: actor is neither buyer nor seller.
            ActionNotAllowed: a buyer asked for a seller-only status.
            InvalidTransition: transition is not allowed, or the seller
                asked for a status owned by another trigger.
        """
        order = self._lock(dto.order_id)
        if dto.actor_id is not None:
            self._require_participant(order, dto.actor_id)
            is_seller = str(order.seller_id) == str(dto.actor_id)
            if is_seller and dto.new_status not in SELLER_REQUESTABLE:
                raise InvalidTransition(
                    order.status,
                    dto.new_status,
                    f"{dto.new_status} is not set by hand; it has its own trigger.",
                )
            if not is_seller and dto.new_status not in BUYER_REQUESTABLE:
                raise ActionNotAllowed(
                    f"Only the seller can move an order to {dto.new_status}."
                )
            if (
                dto.new_status == OrderStatus.CANCELLATION_REQUESTED
                and order.status == OrderStatus.PAYMENT_PENDING
            ):
                self._cancel_unpaid(order, dto.actor_id, is_seller, dto.note)
                return self._reload(dto.order_id)

        apply_transition(
            self._order_repo,
            order,
            dto.new_status,
            note=dto.note,
            actor_id=dto.actor_id,
        )
        if dto.new_status == OrderStatus.CANCELLATION_REQUESTED:
            order.cancellation_reason = dto.note
        self._order_repo.save(order)
        return self._reload(dto.order_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @transaction.atomic
    def cancel_pending(
        self,
        order_id: UUID,
        actor_id: Optional[int] = None,
        reason: str = "Cancelled by buyer",
    ) -> Order:
        """Cancel an unpaid order and give its lines back to the cart.

        Raises:
            OrderNotFound: order does not exist.
            ActionNotAllowed: actor is not the buyer.
            InvalidTransition: the order is not Payment Pending.
        """
        order = self._lock(order_id)
        if actor_id is not None and str(order.buyer_id) != str(actor_id):
            raise ActionNotAllowed("Only the buyer can cancel a pending order.")
        if order.status != OrderStatus.PAYMENT_PENDING:
            raise InvalidTransition(
                order.status,
                OrderStatus.CANCELLED,
                f"Only Payment Pending orders can be cancelled; order is {order.status}.",
            )
        self.cancel_locked(order, reason=reason, actor_id=actor_id)
        return self._reload(order_id)

    @transaction.atomic
    def request_cancellation(
        self, order_id: UUID, actor_id: int, reason: str = ""
    ) -> Order:
        """Buyer or seller cancellation request.

        - Payment Pending: the buyer's request cancels immediately.
        - Cancellation Requested: the seller's request approves it.
        - Confirmed … Out for Delivery: moves to Cancellation Requested.

        Raises:
            OrderNotFound, NotOrderParticipant, ActionNotAllowed,
            InvalidTransition.
        """
        order = self._lock(order_id)
        self._require_participant(order, actor_id)
        is_seller = str(order.seller_id) == str(actor_id)

        if order.status == OrderStatus.PAYMENT_PENDING:
            self._cancel_unpaid(order, actor_id, is_seller, reason)
        elif order.status == OrderStatus.CANCELLATION_REQUESTED:
            if not is_seller:
                raise InvalidTransition(
                    order.status,
                    OrderStatus.CANCELLED,
                    "Cancellation already requested; waiting for the seller.",
                )
            self.cancel_locked(
                order,
                reason=reason or order.cancellation_reason or "Cancelled by seller",
                actor_id=actor_id,
            )
        else:
            apply_transition(
                self._order_repo,
                order,
                OrderStatus.CANCELLATION_REQUESTED,
                note=reason,
                actor_id=actor_id,
            )
            order.cancellation_reason = reason
            self._order_repo.save(order)
        return self._reload(order_id)

    def _cancel_unpaid(
        self, order: Order, actor_id: int, is_seller: bool, reason: str
    ) -> None:
        # Unpaid orders never wait for approval: the reservation goes back now.
        if is_seller:
            raise ActionNotAllowed("Unpaid orders are cancelled by the buyer.")
        self.cancel_locked(order, reason=reason or "Cancelled by buyer", actor_id=actor_id)

    def cancel_locked(
        self, order: Order, reason: str, actor_id: Optional[int] = None
    ) -> None:
        """Cancel an order whose row lock the caller already holds.

        Releases stock first so the cart restore is capped against the
        stock that is actually available again.
        """
        log = logger.bind(order_id=str(order.id), current_status=order.status)
        apply_transition(
            self._order_repo,
            order,
            OrderStatus.CANCELLED,
            note=reason,
            actor_id=actor_id,
        )
        order.cancelled_at = timezone.now()
        order.cancellation_reason = reason
        order.add_domain_event(OrderCancelled(aggregate_id=order.id, reason=reason))

        items = list(order.items.all())
        products = self._product_repo.lock_many(item.product_id for item in items)
        for item in items:
            product = products.get(item.product_id)
            if product is None:
                continue
            product.stock_quantity += item.units
            product.save(update_fields=["stock_quantity", "updated_at"])
            log.info(
                "order.stock_released",
                product_id=str(product.id),
                units=item.units,
                restored_stock=product.stock_quantity,
            )

        restored = self._ledger.restore(order)
        self._order_repo.save(order)
        log.info("order.cancelled", reason=reason, restored_lines=len(restored))

    # ------------------------------------------------------------------
    # Expiration sweep
    # ------------------------------------------------------------------

    def expire_pending_orders(self, now: Optional[datetime] = None) -> List[UUID]:
        """Cancel every unpaid order past its payment deadline.

        Each order is handled in its own transaction so one failure does
        not hold back the rest of the sweep.
        """
        now = now or timezone.now()
        window = timedelta(minutes=settings.ORDER_PAYMENT_WINDOW_MINUTES)
        grace = timedelta(seconds=settings.PAYMENT_EXPIRY_GRACE_SECONDS)
        candidates = self._order_repo.expired_pending_ids(now - window - grace)

        expired = [order_id for order_id in candidates if self._expire_one(order_id, now)]
        logger.info(
            "order.expiration_sweep",
            candidates=len(candidates),
            expired=len(expired),
        )
        return expired

    @transaction.atomic
    def _expire_one(self, order_id: UUID, now: datetime) -> bool:
        order = self._order_repo.get_for_update(str(order_id))
        # Re-checked under the lock: a payment may have won the race.
        if order is None or order.status not in EXPIRABLE_STATES:
            return False
        if order.payment_status not in RETRYABLE_PAYMENT_STATES:
            return False
        if now < payment_deadline(order):
            return False
        self.cancel_locked(order, reason=CANCELLATION_REASON_EXPIRED)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: str, user_id: Optional[int] = None) -> Order:
        """Retrieve a single order by ID.

        Raises:
            OrderNotFound: if the order does not exist.
            NotOrderParticipant: *user_id* is neither buyer nor seller.
        """
        order = self._order_repo.get_by_id(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        if user_id is not None:
            self._require_participant(order, user_id)
        return order

    def get_order_by_payment(self, payment_order_id: str, user_id: Optional[int] = None) -> Order:
        """Order owning a processor session, current or superseded by a retry.

        Raises:
            OrderNotFound: no order opened that session.
            NotOrderParticipant: *user_id* is neither buyer nor seller.
        """
        order = self._order_repo.get_by_payment_order_id(payment_order_id)
        if not order:
            raise OrderNotFound(f"No order for payment session {payment_order_id}.")
        if user_id is not None:
            self._require_participant(order, user_id)
        return order

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lock(self, order_id: UUID) -> Order:
        order = self._order_repo.get_for_update(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def _reload(self, order_id: UUID) -> Order:
        order = self._order_repo.get_by_id(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    @staticmethod
    def _require_participant(order: Order, user_id: int) -> None:
        if not order.is_participant(user_id):
            raise NotOrderParticipant(f"User {user_id} is not part of order {order.id}.")

    @staticmethod
    def _require_seller(order: Order, user_id: int) -> None:
        if str(order.seller_id) != str(user_id):
            raise ActionNotAllowed("Only the seller can generate a shipping label.")


def build_order_service() -> OrderService:
    """Wire the service with the Django repositories and configured carrier."""
    from modules.cart.ledger import CartReservationLedger
    from modules.cart.repositories.django_repository import CartDjangoRepository
    from modules.orders.repositories.django_repository import OrderDjangoRepository
    from modules.products.repositories.django_repository import ProductDjangoRepository
    from modules.shipping.carrier import get_carrier

    cart_repository = CartDjangoRepository()
    product_repository = ProductDjangoRepository()
    return OrderService(
        order_repository=OrderDjangoRepository(),
        product_repository=product_repository,
        cart_repository=cart_repository,
        ledger=CartReservationLedger(cart_repository, product_repository),
        carrier=get_carrier(),
    )
