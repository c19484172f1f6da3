"""Base contract for aggregates that publish domain events.

An aggregate collects events while it is mutated; ``save`` persists the
row and moves those events into the outbox inside the same transaction,
so a rolled back write never reaches a subscriber.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

T = TypeVar("T")


class IRepository(ABC, Generic[T]):
    """Repository for an event-emitting aggregate ``T``."""

    @abstractmethod
    def save(self, entity: T) -> T:
        """Persist *entity* and record its pending events in the outbox."""
