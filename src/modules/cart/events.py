"""Domain events for the Cart bounded context."""

from __future__ import annotations

from dataclasses import dataclass

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class CartChanged(DomainEvent):
    """Raised when cart lines are reserved out of or restored into a cart."""

    buyer_id: str = ""
    reason: str = ""
