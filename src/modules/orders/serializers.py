"""Order DRF serializers for API input/output.

Input serializers validate request bodies before the view builds DTOs.
The detail representation is ``OrderSnapshotDTO.to_wire()`` so the REST
payload and the ``orderUpdated`` push payload are the same document; only
the list uses a ModelSerializer.
"""

from __future__ import annotations

from rest_framework import serializers

from modules.orders.constants import OrderStatus
from modules.orders.models import Order

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class TransitionSerializer(serializers.Serializer):
    """Validates a generic status change (``PATCH /orders/{id}/``)."""

    status = serializers.ChoiceField(choices=OrderStatus.values)
    note = serializers.CharField(required=False, default="", allow_blank=True, max_length=500)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, default="", allow_blank=True, max_length=500)


class BuyNowSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, default=1)


class VerifyPaymentSerializer(serializers.Serializer):
    """Processor success callback forwarded by the buyer's checkout widget."""

    order_id = serializers.UUIDField()
    payment_id = serializers.CharField(max_length=64)
    signature = serializers.CharField(max_length=256)


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight list row; camelCase like the snapshot."""

    orderId = serializers.UUIDField(source="id", read_only=True)
    orderNumber = serializers.CharField(source="order_number", read_only=True)
    buyerId = serializers.CharField(source="buyer_id", read_only=True)
    sellerId = serializers.CharField(source="seller_id", read_only=True)
    paymentStatus = serializers.CharField(source="payment_status", read_only=True)
    totalPrice = serializers.DecimalField(
        source="total_price", max_digits=12, decimal_places=2, read_only=True
    )
    itemCount = serializers.SerializerMethodField()
    awbCode = serializers.CharField(source="awb_code", read_only=True, allow_null=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    expiresAt = serializers.DateTimeField(source="expires_at", read_only=True)

    class Meta:
        model = Order
        fields = [
            "orderId",
            "orderNumber",
            "buyerId",
            "sellerId",
            "status",
            "paymentStatus",
            "totalPrice",
            "itemCount",
            "awbCode",
            "version",
            "createdAt",
            "expiresAt",
        ]
        read_only_fields = fields

    def get_itemCount(self, obj: Order) -> int:
        return len(obj.items.all())
