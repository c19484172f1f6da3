"""Payment domain exceptions."""

from __future__ import annotations


class RetryIneligible(Exception):
    """A new payment attempt is not allowed for the order.

    ``reason`` is the human-readable explanation shown to the buyer.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class PaymentVerificationFailure(Exception):
    """The processor callback could not be verified.

    The order stays Payment Pending; the buyer retries or cancels.
    """


class PaymentAfterExpiry(Exception):
    """The payment was captured after the order expired; it will be refunded."""


class GatewayUnavailable(Exception):
    """The payment processor could not be reached or answered with an error."""


class DuplicatePayment(Exception):
    """A second capture arrived for an order that no longer takes payment; it will be refunded."""
