"""Product repository interface.

Checkout and the reservation ledger only ever need to lock a batch of
products before touching stock; the catalog itself is managed elsewhere.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Iterable
from uuid import UUID

if TYPE_CHECKING:
    from modules.products.models import Product


class IProductRepository(ABC):
    """Stock access for the Product aggregate."""

    @abstractmethod
    def lock_many(self, ids: Iterable[UUID]) -> Dict[UUID, "Product"]:
        """Lock product rows (SELECT FOR UPDATE) sorted by PK.

        Sorting prevents deadlocks between concurrent checkouts and
        cancellations touching the same products.
        """
