"""Cart domain exceptions."""

from __future__ import annotations


class EmptyCart(Exception):
    """The buyer has nothing to check out."""


class ReservationConflict(Exception):
    """A cart line is already held by another non-terminal order."""
