"""Payment Retry Coordinator.

Decides whether an unpaid order may receive a new payment attempt,
opens processor sessions, verifies success callbacks against the
processor before confirming the order, and routes processor-side
cancellation through the regular pending-order cancellation.

Every session opened for an order stays valid for verification, so a
buyer who pays on an older checkout widget after a retry is still
confirmed.  A capture that can no longer pay the order (it was paid on
another session) is refunded on its own.

Expiration vs payment: both are applied under the order row lock.  A
payment whose capture time is not later than ``expires_at`` plus
``PAYMENT_EXPIRY_GRACE_SECONDS`` confirms the order; a later one (or one
that arrives after the sweep already cancelled the order) is refunded.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Optional, Tuple
from uuid import UUID

import structlog
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from modules.orders.constants import (
    CANCELLATION_REASON_EXPIRED,
    RETRYABLE_PAYMENT_STATES,
    OrderStatus,
    PaymentStatus,
)
from modules.orders.exceptions import ActionNotAllowed, OrderNotFound
from modules.orders.services import payment_deadline
from modules.orders.transitions import (
    apply_transition,
    schedule_refund,
    set_payment_status,
)
from modules.payments.exceptions import (
    DuplicatePayment,
    GatewayUnavailable,
    PaymentAfterExpiry,
    PaymentVerificationFailure,
    RetryIneligible,
)
from modules.payments.models import AttemptStatus

if TYPE_CHECKING:
    from modules.cart.ledger import CartReservationLedger
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.services import OrderService
    from modules.payments.gateway.port import PaymentGateway
    from modules.payments.models import PaymentAttempt
    from modules.payments.repository import PaymentAttemptRepository

logger = structlog.get_logger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Rupees → paise."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def schedule_attempt_refund(attempt: PaymentAttempt) -> None:
    """Queue the refund of a single session's capture once the transaction commits."""
    from modules.payments.tasks import refund_duplicate_payment

    attempt_id = str(attempt.id)
    transaction.on_commit(lambda: refund_duplicate_payment.delay(attempt_id))
    logger.info("payment.attempt_refund_scheduled", attempt_id=attempt_id)


@dataclass(frozen=True)
class RetryEligibility:
    eligible: bool
    reason: str = ""


@dataclass(frozen=True)
class PaymentSession:
    """What the buyer's checkout widget needs to collect a payment."""

    order_id: str
    payment_order_id: str
    amount: int
    currency: str
    key_id: str


class PaymentRetryCoordinator:
    """Application service for payment attempts on Payment Pending orders."""

    def __init__(
        self,
        order_repository: IOrderRepository,
        order_service: OrderService,
        ledger: CartReservationLedger,
        gateway: PaymentGateway,
        attempt_repository: PaymentAttemptRepository,
    ) -> None:
        self._order_repo = order_repository
        self._attempts = attempt_repository
        self._order_service = order_service
        self._ledger = ledger
        self._gateway = gateway

    @property
    def key_id(self) -> str:
        return self._gateway.key_id

    @property
    def currency(self) -> str:
        return settings.PAYMENT_CURRENCY

    @staticmethod
    def amount_for(order: Order) -> int:
        return to_minor_units(order.total_price)

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def can_retry(self, order_id: UUID, user_id: Optional[int] = None) -> RetryEligibility:
        """Whether a new payment attempt is allowed right now.

        Never raises for an ineligible order; the reason is returned.

        Raises:
            OrderNotFound: order does not exist.
            ActionNotAllowed: *user_id* is not the buyer.
        """
        order = self._order_repo.get_by_id(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        self._require_buyer(order, user_id)
        return self._eligibility(order)

    @staticmethod
    def _eligibility(order: Order) -> RetryEligibility:
        if order.status != OrderStatus.PAYMENT_PENDING:
            return RetryEligibility(
                False, f"This order is {order.status}; only unpaid orders can be paid."
            )
        if order.payment_status not in RETRYABLE_PAYMENT_STATES:
            return RetryEligibility(
                False, f"Payment is already {order.payment_status} for this order."
            )
        if timezone.now() >= payment_deadline(order):
            return RetryEligibility(
                False, "The payment window for this order has closed."
            )
        return RetryEligibility(True)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def retry(self, order_id: UUID, user_id: Optional[int] = None) -> PaymentSession:
        """Open a new processor session for the same order and amount.

        Raises:
            OrderNotFound, ActionNotAllowed.
            RetryIneligible: the order may not be paid now.
            GatewayUnavailable: the processor could not open a session.
        """
        eligibility = self.can_retry(order_id, user_id)
        if not eligibility.eligible:
            logger.info("payment.retry_ineligible", order_id=str(order_id), reason=eligibility.reason)
            raise RetryIneligible(eligibility.reason)
        return self.open_session(order_id)

    @transaction.atomic
    def open_session(self, order_id: UUID) -> PaymentSession:
        """Create a processor session and remember it on the order."""
        order = self._lock(order_id)
        eligibility = self._eligibility(order)
        if not eligibility.eligible:
            raise RetryIneligible(eligibility.reason)

        amount = to_minor_units(order.total_price)
        session = self._gateway.create_order(
            amount=amount,
            currency=settings.PAYMENT_CURRENCY,
            receipt=order.order_number,
        )
        self._attempts.record(str(order.id), session.id, session.amount)
        order.payment_order_id = session.id
        order.payment_attempts += 1
        set_payment_status(order, PaymentStatus.PENDING)
        self._order_repo.save(order)

        logger.info(
            "payment.session_opened",
            order_id=str(order.id),
            payment_order_id=session.id,
            attempt=order.payment_attempts,
        )
        return PaymentSession(
            order_id=str(order.id),
            payment_order_id=session.id,
            amount=session.amount,
            currency=session.currency,
            key_id=self._gateway.key_id,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(
        self,
        order_id: UUID,
        payment_id: str,
        signature: str,
        user_id: Optional[int] = None,
    ) -> Order:
        """Confirm the order once the processor vouches for the payment.

        Failed verification is committed (payment status Failed) before
        the error is raised, so the buyer sees it on the next fetch.

        Raises:
            OrderNotFound, ActionNotAllowed.
            PaymentVerificationFailure: signature, amount or capture check
                failed; the order stays Payment Pending.
            PaymentAfterExpiry: the order expired first; refund scheduled.
            DuplicatePayment: the order was already paid on another
                session; this capture is refunded.
        """
        order, error = self._verify_locked(order_id, payment_id, signature, user_id)
        if error is not None:
            raise error
        return self._order_repo.get_by_id(str(order_id)) or order

    @transaction.atomic
    def _verify_locked(
        self,
        order_id: UUID,
        payment_id: str,
        signature: str,
        user_id: Optional[int],
    ) -> Tuple[Order, Optional[Exception]]:
        order = self._lock(order_id)
        self._require_buyer(order, user_id)
        log = logger.bind(order_id=str(order.id), payment_id=payment_id, status=order.status)

        if order.payment_id == payment_id and order.payment_status not in RETRYABLE_PAYMENT_STATES:
            log.info("payment.verify_replayed")
            return order, None

        attempt = self._matching_attempt(order, payment_id, signature)
        if attempt is None:
            log.warning("payment.signature_mismatch")
            self._mark_failed(order)
            return order, PaymentVerificationFailure(
                "Payment signature could not be verified."
            )
        log = log.bind(payment_order_id=attempt.payment_order_id)

        try:
            payment = self._gateway.fetch_payment(payment_id)
        except GatewayUnavailable as exc:
            log.warning("payment.fetch_failed", error=str(exc))
            return order, PaymentVerificationFailure(
                "The payment processor could not confirm this payment. Please try again."
            )

        expected = to_minor_units(order.total_price)
        if (
            payment.order_id != attempt.payment_order_id
            or payment.amount != expected
            or not payment.is_captured
        ):
            log.warning(
                "payment.mismatch",
                processor_order_id=payment.order_id,
                processor_amount=payment.amount,
                expected_amount=expected,
                processor_status=payment.status,
            )
            self._mark_failed(order)
            return order, PaymentVerificationFailure(
                "The processor did not report a completed payment for this order."
            )

        captured_at = payment.captured_at or timezone.now()

        if order.status == OrderStatus.PAYMENT_PENDING:
            self._attempts.mark(attempt, AttemptStatus.CAPTURED, payment_id)
            order.payment_order_id = attempt.payment_order_id
            order.payment_id = payment_id
            order.paid_at = captured_at
            set_payment_status(order, PaymentStatus.PAID)
            if captured_at <= payment_deadline(order):
                apply_transition(
                    self._order_repo,
                    order,
                    OrderStatus.CONFIRMED,
                    note="Payment received",
                    actor_id=user_id,
                )
                self._ledger.consume(order)
                self._order_repo.save(order)
                log.info("payment.verified")
                return order, None

            # Captured after the deadline: expiration wins, the cancel
            # path turns Paid into Refund Requested.
            self._order_service.cancel_locked(order, reason=CANCELLATION_REASON_EXPIRED)
            log.warning("payment.captured_after_expiry")
            return order, PaymentAfterExpiry(
                "The order expired before the payment was captured; a refund has been initiated."
            )

        if order.status == OrderStatus.CANCELLED and order.payment_status in RETRYABLE_PAYMENT_STATES:
            self._attempts.mark(attempt, AttemptStatus.CAPTURED, payment_id)
            order.payment_order_id = attempt.payment_order_id
            order.payment_id = payment_id
            order.paid_at = captured_at
            set_payment_status(order, PaymentStatus.REFUND_REQUESTED)
            schedule_refund(order)
            self._order_repo.save(order)
            log.warning("payment.captured_after_cancel")
            return order, PaymentAfterExpiry(
                "The order was cancelled before the payment arrived; a refund has been initiated."
            )

        # The order already holds another payment: give this one back.
        if attempt.status in (AttemptStatus.REFUND_REQUESTED, AttemptStatus.REFUNDED):
            log.info("payment.duplicate_replayed")
        else:
            self._attempts.mark(attempt, AttemptStatus.REFUND_REQUESTED, payment_id)
            schedule_attempt_refund(attempt)
            log.warning("payment.duplicate_capture", order_payment_id=order.payment_id)
        return order, DuplicatePayment(
            "This order was already paid; the extra payment will be refunded."
        )

    def _matching_attempt(
        self, order: Order, payment_id: str, signature: str
    ) -> Optional[PaymentAttempt]:
        for attempt in self._attempts.for_order(str(order.id)):
            if self._gateway.verify_signature(attempt.payment_order_id, payment_id, signature):
                return attempt
        return None

    def _mark_failed(self, order: Order) -> None:
        if order.status != OrderStatus.PAYMENT_PENDING:
            return
        set_payment_status(order, PaymentStatus.FAILED)
        self._order_repo.save(order)

    # ------------------------------------------------------------------
    # Processor-side cancellation
    # ------------------------------------------------------------------

    def abort(self, order_id: UUID, user_id: Optional[int] = None) -> Order:
        """The buyer dismissed the processor widget: cancel like a pending cancel."""
        logger.info("payment.aborted", order_id=str(order_id))
        return self._order_service.cancel_pending(
            order_id, actor_id=user_id, reason="Payment cancelled by buyer"
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def refund(self, order_id: UUID) -> bool:
        """Refund a payment whose order was cancelled or expired.

        Returns ``False`` when there is nothing to refund.

        Raises:
            GatewayUnavailable: the processor rejected the refund; the
                order stays Refund Processing for the next attempt.
        """
        with transaction.atomic():
            order = self._lock(order_id)
            if order.payment_status not in (
                PaymentStatus.REFUND_REQUESTED,
                PaymentStatus.REFUND_PROCESSING,
            ) or not order.payment_id:
                return False
            set_payment_status(order, PaymentStatus.REFUND_PROCESSING)
            self._order_repo.save(order)
            payment_id = order.payment_id
            amount = to_minor_units(order.total_price)

        result = self._gateway.create_refund(payment_id, amount)
        if not result.success:
            logger.error("payment.refund_failed", order_id=str(order_id), reason=result.failure_reason)
            raise GatewayUnavailable(result.failure_reason or "Refund failed.")

        with transaction.atomic():
            order = self._lock(order_id)
            set_payment_status(order, PaymentStatus.REFUNDED)
            self._order_repo.save(order)
        logger.info("payment.refunded", order_id=str(order_id), refund_id=result.gateway_refund_id)
        return True

    def refund_attempt(self, attempt_id: UUID) -> bool:
        """Refund a capture that did not pay its order (already paid elsewhere).

        Returns ``False`` when the session has no pending refund.

        Raises:
            GatewayUnavailable: the processor rejected the refund; the
                session stays Refund Requested for the next attempt.
        """
        with transaction.atomic():
            attempt = self._attempts.get_for_update(str(attempt_id))
            if attempt is None or attempt.status != AttemptStatus.REFUND_REQUESTED:
                return False
            payment_id = attempt.payment_id
            amount = attempt.amount

        result = self._gateway.create_refund(payment_id, amount)
        if not result.success:
            logger.error(
                "payment.attempt_refund_failed",
                attempt_id=str(attempt_id),
                reason=result.failure_reason,
            )
            raise GatewayUnavailable(result.failure_reason or "Refund failed.")

        with transaction.atomic():
            attempt = self._attempts.get_for_update(str(attempt_id))
            self._attempts.mark(attempt, AttemptStatus.REFUNDED)
        logger.info(
            "payment.attempt_refunded",
            attempt_id=str(attempt_id),
            refund_id=result.gateway_refund_id,
        )
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lock(self, order_id: UUID) -> Order:
        order = self._order_repo.get_for_update(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    @staticmethod
    def _require_buyer(order: Order, user_id: Optional[int]) -> None:
        if user_id is not None and str(order.buyer_id) != str(user_id):
            raise ActionNotAllowed("Only the buyer can pay for this order.")


def build_payment_coordinator() -> PaymentRetryCoordinator:
    """Wire the coordinator with the Django repositories and configured gateway."""
    from modules.orders.repositories.django_repository import OrderDjangoRepository
    from modules.orders.services import build_order_service
    from modules.payments.gateway import get_gateway
    from modules.payments.repository import PaymentAttemptRepository

    order_service = build_order_service()
    return PaymentRetryCoordinator(
        order_repository=OrderDjangoRepository(),
        order_service=order_service,
        ledger=order_service.ledger,
        gateway=get_gateway(),
        attempt_repository=PaymentAttemptRepository(),
    )
