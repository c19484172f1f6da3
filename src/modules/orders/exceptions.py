"""Order domain exceptions.

Raised by the Service Layer when business rules are violated.
The API layer (Views) catches these and translates them into
appropriate HTTP responses.
"""

from __future__ import annotations


class OrderNotFound(Exception):
    """The requested order does not exist."""


class InvalidTransition(Exception):
    """The requested status change is not allowed from the current status.

    The order is left untouched.
    """

    def __init__(self, current: str, requested: str, message: str = "") -> None:
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot transition from {current} to {requested}.")


class NotOrderParticipant(Exception):
    """The acting user is neither the buyer nor the seller of the order."""


class InsufficientStock(Exception):
    """Not enough stock to cover the requested lots."""


class InactiveProduct(Exception):
    """A product in the cart is inactive and cannot be checked out."""


class ActionNotAllowed(Exception):
    """The acting user's role may not perform this action on the order."""
