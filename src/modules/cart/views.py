"""Cart API views: what the buyer's cart holds right now."""

from __future__ import annotations

from rest_framework.decorators import action
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.cart.models import CartItem
from modules.cart.repositories.django_repository import CartDjangoRepository
from modules.cart.serializers import CartItemSerializer


class CartViewSet(GenericViewSet):
    queryset = CartItem.objects.none()
    pagination_class = None

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._repo = CartDjangoRepository()

    def list(self, request: Request) -> Response:
        """GET /api/v1/cart/"""
        items = (
            CartItem.objects.select_related("product")
            .filter(cart__buyer_id=request.user.id)
            .order_by("created_at")
        )
        return Response(
            {
                "items": CartItemSerializer(items, many=True).data,
                "count": len(items),
            }
        )

    @action(detail=False, methods=["get"])
    def count(self, request: Request) -> Response:
        """GET /api/v1/cart/count/ → ``{"count": n}``"""
        return Response({"count": self._repo.count_items(request.user.id)})
