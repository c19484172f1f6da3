"""Cart DRF serializers (read only)."""

from __future__ import annotations

from rest_framework import serializers

from modules.cart.models import CartItem


class CartItemSerializer(serializers.ModelSerializer):
    productId = serializers.UUIDField(source="product_id", read_only=True)
    productName = serializers.CharField(source="product.name", read_only=True)
    productSku = serializers.CharField(source="product.sku", read_only=True)
    sellerId = serializers.CharField(source="product.seller_id", read_only=True)
    lotSize = serializers.IntegerField(source="lot_size", read_only=True)
    unitPrice = serializers.DecimalField(
        source="product.price", max_digits=10, decimal_places=2, read_only=True
    )

    class Meta:
        model = CartItem
        fields = [
            "productId",
            "productName",
            "productSku",
            "sellerId",
            "lotSize",
            "quantity",
            "unitPrice",
        ]
        read_only_fields = fields
