"""Django ORM implementation of the Product repository."""

from __future__ import annotations

from typing import Dict, Iterable
from uuid import UUID

from modules.products.models import Product
from modules.products.repositories.interfaces import IProductRepository


class ProductDjangoRepository(IProductRepository):
    """Concrete Product repository backed by Django ORM."""

    def lock_many(self, ids: Iterable[UUID]) -> Dict[UUID, Product]:
        ordered = sorted({UUID(str(i)) for i in ids}, key=str)
        products = (
            Product.objects.select_for_update()
            .filter(id__in=ordered)
            .order_by("id")
        )
        return {product.id: product for product in products}
