import django_filters
from django.db.models import Q

from modules.orders.constants import ACTIVE_SHIPMENT_STATES, PaymentStatus
from modules.orders.models import Order


class OrderFilter(django_filters.FilterSet):
    """Query filters for the order list screens.

    ``status`` accepts a comma separated list, e.g. ``?status=Shipped,In Transit``.
    """

    status = django_filters.BaseInFilter(field_name="status")
    payment_status = django_filters.ChoiceFilter(choices=PaymentStatus.choices)
    in_transit = django_filters.BooleanFilter(method="filter_in_transit")
    sync_failed = django_filters.BooleanFilter(field_name="tracking_sync_failed")
    created_after = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = Order
        fields = [
            "status",
            "payment_status",
            "in_transit",
            "sync_failed",
            "created_after",
            "created_before",
        ]

    def filter_in_transit(self, queryset, name, value):
        """Orders the carrier reconciler is still following."""
        trackable = Q(status__in=ACTIVE_SHIPMENT_STATES, awb_code__isnull=False)
        return queryset.filter(trackable) if value else queryset.exclude(trackable)
