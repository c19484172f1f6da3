"""Order API views.

Exposes ``OrderService``, ``PaymentRetryCoordinator`` and
``CarrierReconciler`` via HTTP using a DRF ViewSet.  Domain exceptions
are caught and translated into ``{"detail", "code"}`` responses; the view
never swallows generic exceptions.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

import structlog
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.cart.exceptions import EmptyCart, ReservationConflict
from modules.core.pagination import StandardResultsSetPagination
from modules.orders.constants import OrderStatus, PaymentStatus
from modules.orders.dtos import BuyNowDTO, CheckoutDTO, OrderSnapshotDTO, TransitionOrderDTO
from modules.orders.exceptions import (
    ActionNotAllowed,
    InactiveProduct,
    InsufficientStock,
    InvalidTransition,
    NotOrderParticipant,
    OrderNotFound,
)
from modules.orders.filters import OrderFilter
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.serializers import (
    BuyNowSerializer,
    CancelSerializer,
    OrderListSerializer,
    TransitionSerializer,
    VerifyPaymentSerializer,
)
from modules.orders.services import build_order_service
from modules.payments.exceptions import (
    DuplicatePayment,
    GatewayUnavailable,
    PaymentAfterExpiry,
    PaymentVerificationFailure,
    RetryIneligible,
)
from modules.payments.gateway import get_gateway
from modules.payments.repository import PaymentAttemptRepository
from modules.payments.services import PaymentRetryCoordinator, PaymentSession
from modules.shipping.carrier import get_carrier
from modules.shipping.exceptions import CarrierUnavailable, ShipmentNotCreated
from modules.shipping.reconciler import CarrierReconciler

logger = structlog.get_logger(__name__)

# Domain exception → (HTTP status, machine-readable code)
ERROR_RESPONSES = {
    OrderNotFound: (status.HTTP_404_NOT_FOUND, "not_found"),
    NotOrderParticipant: (status.HTTP_403_FORBIDDEN, "not_participant"),
    ActionNotAllowed: (status.HTTP_403_FORBIDDEN, "action_not_allowed"),
    InvalidTransition: (status.HTTP_400_BAD_REQUEST, "invalid_transition"),
    RetryIneligible: (status.HTTP_400_BAD_REQUEST, "retry_ineligible"),
    PaymentVerificationFailure: (status.HTTP_402_PAYMENT_REQUIRED, "payment_verification_failed"),
    PaymentAfterExpiry: (status.HTTP_409_CONFLICT, "order_expired"),
    DuplicatePayment: (status.HTTP_409_CONFLICT, "duplicate_payment"),
    EmptyCart: (status.HTTP_400_BAD_REQUEST, "empty_cart"),
    InactiveProduct: (status.HTTP_400_BAD_REQUEST, "inactive_product"),
    InsufficientStock: (status.HTTP_409_CONFLICT, "insufficient_stock"),
    ReservationConflict: (status.HTTP_409_CONFLICT, "reservation_conflict"),
    GatewayUnavailable: (status.HTTP_503_SERVICE_UNAVAILABLE, "gateway_unavailable"),
    CarrierUnavailable: (status.HTTP_503_SERVICE_UNAVAILABLE, "carrier_unavailable"),
    ShipmentNotCreated: (status.HTTP_503_SERVICE_UNAVAILABLE, "shipment_not_created"),
}
DOMAIN_ERRORS = tuple(ERROR_RESPONSES)


def error_response(exc: Exception) -> Response:
    http_status, code = ERROR_RESPONSES[type(exc)]
    return Response({"detail": str(exc), "code": code}, status=http_status)


def _order_id(pk: Optional[str]) -> UUID:
    try:
        return UUID(str(pk))
    except ValueError:
        raise OrderNotFound(f"Order {pk} not found.") from None


def _session_payload(session: PaymentSession) -> Dict[str, Any]:
    return {
        "orderId": session.order_id,
        "paymentOrderId": session.payment_order_id,
        "amount": session.amount,
        "currency": session.currency,
        "keyId": session.key_id,
    }


class OrderViewSet(GenericViewSet):
    """ViewSet for Order operations.

    Does **not** extend ``ModelViewSet``: all writes go through the
    service layer, which owns locking and the state machine.
    """

    queryset = Order.objects.all()
    filterset_class = OrderFilter
    ordering_fields = ["created_at", "total_price", "status"]
    ordering = ["-created_at", "-id"]
    filter_backends = [DjangoFilterBackend, OrderingFilter]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_order_service()
        self._payments = PaymentRetryCoordinator(
            order_repository=OrderDjangoRepository(),
            order_service=self._service,
            ledger=self._service.ledger,
            gateway=get_gateway(),
            attempt_repository=PaymentAttemptRepository(),
        )
        self._reconciler = CarrierReconciler(OrderDjangoRepository(), get_carrier())

    def get_throttles(self) -> list[BaseThrottle]:
        """Per-action throttling scopes."""
        throttle_scope: str | None
        if self.action in ("checkout", "buy_now"):
            throttle_scope = "checkout"
        elif self.action == "sync_tracking":
            throttle_scope = "tracking_sync"
        else:
            throttle_scope = None
        self.throttle_scope = throttle_scope
        return super().get_throttles()

    def _snapshot(self, order: Order) -> Dict[str, Any]:
        return OrderSnapshotDTO.from_entity(order).to_wire()

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def get_queryset(self):
        role = self.request.query_params.get("role", "buyer")
        field = "seller_id" if role == "seller" else "buyer_id"
        return OrderDjangoRepository().list({field: self.request.user.id})

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/?role=buyer|seller&page=N

        Only orders where the user has the requested role.  Filtering is
        handled by ``OrderFilter``; results are paginated.
        """
        role = request.query_params.get("role", "buyer")
        if role not in ("buyer", "seller"):
            return Response(
                {"detail": "role must be 'buyer' or 'seller'.", "code": "invalid_role"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        queryset = self.filter_queryset(self.get_queryset())

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = OrderListSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/ → full order snapshot."""
        try:
            order = self._service.get_order(str(_order_id(pk)), user_id=request.user.id)
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(self._snapshot(order))

    @action(
        detail=False,
        methods=["get"],
        url_path=r"by-payment/(?P<payment_order_id>[^/]+)",
    )
    def by_payment(self, request: Request, payment_order_id: str) -> Response:
        """GET /api/v1/orders/by-payment/{payment_order_id}/

        Snapshot of the order that opened a processor session, for the
        confirmation page that only knows the session id.
        """
        try:
            order = self._service.get_order_by_payment(payment_order_id, user_id=request.user.id)
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(self._snapshot(order))

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    @action(detail=False, methods=["post"], url_path="cart-checkout")
    def checkout(self, request: Request) -> Response:
        """POST /api/v1/orders/cart-checkout/

        One Payment Pending order per seller, each with a processor
        session.  Supports idempotency via the ``Idempotency-Key`` header.
        A session the processor could not open is reported as ``null``;
        the buyer opens it later through retry-payment.
        """
        dto = CheckoutDTO(
            buyer_id=request.user.id,
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        try:
            orders = self._service.checkout(dto)
        except DOMAIN_ERRORS as exc:
            return error_response(exc)

        results = [self._with_session(order) for order in orders]
        return Response({"orders": results}, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="buy-now")
    def buy_now(self, request: Request) -> Response:
        """POST /api/v1/orders/buy-now/

        Body ``{product_id, quantity}``.  One Payment Pending order for a
        single product, skipping the cart; same payload as one entry of
        cart-checkout.  Honours the ``Idempotency-Key`` header.
        """
        serializer = BuyNowSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dto = BuyNowDTO(
            buyer_id=request.user.id,
            product_id=serializer.validated_data["product_id"],
            quantity=serializer.validated_data["quantity"],
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        try:
            order = self._service.buy_now(dto)
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(self._with_session(order), status=status.HTTP_201_CREATED)

    def _with_session(self, order: Order) -> Dict[str, Any]:
        """Snapshot plus processor session; ``payment`` is ``None`` if none could be opened."""
        payment: Optional[Dict[str, Any]] = None
        if order.payment_order_id:
            payment = _session_payload(
                PaymentSession(
                    order_id=str(order.id),
                    payment_order_id=order.payment_order_id,
                    amount=self._payments.amount_for(order),
                    currency=self._payments.currency,
                    key_id=self._payments.key_id,
                )
            )
        else:
            try:
                payment = _session_payload(self._payments.open_session(order.id))
            except (GatewayUnavailable, RetryIneligible) as exc:
                logger.warning(
                    "order.checkout_session_failed",
                    order_id=str(order.id),
                    error=str(exc),
                )
            order = self._service.get_order(str(order.id))
        return {"order": self._snapshot(order), "payment": payment}

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def partial_update(self, request: Request, pk: str | None = None) -> Response:
        """PATCH /api/v1/orders/{pk}/

        Generic status change.  Cancellations go through ``/cancel/`` and
        confirmations only happen through payment verification.
        """
        serializer = TransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_status = serializer.validated_data["status"]

        if new_status == OrderStatus.CANCELLED:
            return Response(
                {"detail": "Use the /cancel/ endpoint for cancellations.", "code": "invalid_transition"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        if new_status == OrderStatus.CONFIRMED:
            return Response(
                {"detail": "Orders are confirmed by payment verification.", "code": "invalid_transition"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            order = self._service.transition(
                TransitionOrderDTO(
                    order_id=_order_id(pk),
                    new_status=new_status,
                    actor_id=request.user.id,
                    note=serializer.validated_data["note"],
                )
            )
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(self._snapshot(order))

    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/cancel/

        Buyer: cancels an unpaid order or requests cancellation of a paid
        one.  Seller: approves a pending request.
        """
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            order = self._service.request_cancellation(
                _order_id(pk),
                actor_id=request.user.id,
                reason=serializer.validated_data["reason"],
            )
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(self._snapshot(order))

    @action(detail=True, methods=["delete"], url_path="cancel-pending")
    def cancel_pending(self, request: Request, pk: str | None = None) -> Response:
        """DELETE /api/v1/orders/{pk}/cancel-pending/

        Cancels a Payment Pending order and puts its lines back in the cart.
        """
        try:
            order = self._service.cancel_pending(_order_id(pk), actor_id=request.user.id)
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(self._snapshot(order))

    @action(detail=True, methods=["post"], url_path="generate-label")
    def generate_label(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/generate-label/ (seller only)."""
        try:
            order = self._service.generate_label(_order_id(pk), actor_id=request.user.id)
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(self._snapshot(order))

    @action(detail=True, methods=["post"], url_path="sync-tracking")
    def sync_tracking(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/sync-tracking/

        Never fails because of the carrier: ``syncFailed`` tells the
        client it is looking at cached data.
        """
        try:
            order_id = _order_id(pk)
            self._service.get_order(str(order_id), user_id=request.user.id)
            result = self._reconciler.reconcile(order_id)
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(
            {
                "order": self._snapshot(result.order),
                "syncFailed": result.sync_failed,
                "appended": result.appended,
            }
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    @action(detail=True, methods=["get"], url_path="can-retry-payment")
    def can_retry_payment(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/can-retry-payment/ → ``{canRetry, message?}``."""
        try:
            eligibility = self._payments.can_retry(_order_id(pk), user_id=request.user.id)
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        body: Dict[str, Any] = {"canRetry": eligibility.eligible}
        if eligibility.reason:
            body["message"] = eligibility.reason
        return Response(body)

    @action(detail=True, methods=["post"], url_path="retry-payment")
    def retry_payment(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/retry-payment/ → new processor session."""
        try:
            session = self._payments.retry(_order_id(pk), user_id=request.user.id)
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(_session_payload(session), status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="verify-payment")
    def verify_payment(self, request: Request) -> Response:
        """POST /api/v1/orders/verify-payment/

        Body ``{order_id, payment_id, signature}`` from the processor's
        success callback.
        """
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            order = self._payments.verify(
                data["order_id"],
                payment_id=data["payment_id"],
                signature=data["signature"],
                user_id=request.user.id,
            )
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(self._snapshot(order))

    @action(detail=True, methods=["post"], url_path="abort-payment")
    def abort_payment(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/abort-payment/

        The buyer dismissed the processor widget.  Only an order whose
        payment never went through can be aborted.
        """
        try:
            order_id = _order_id(pk)
            order = self._service.get_order(str(order_id), user_id=request.user.id)
            if order.payment_status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
                raise InvalidTransition(
                    order.status,
                    OrderStatus.CANCELLED,
                    f"Payment is already {order.payment_status}.",
                )
            order = self._payments.abort(order_id, user_id=request.user.id)
        except DOMAIN_ERRORS as exc:
            return error_response(exc)
        return Response(self._snapshot(order))
