from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.orders"
    label = "orders"

    def ready(self) -> None:
        from modules.orders.events import (
            OrderCancelled,
            OrderCarrierUpdated,
            OrderCreated,
            OrderSnapshotChanged,
            OrderStatusChanged,
            OrderTrackingSyncChanged,
        )
        from modules.orders.handlers import (
            order_cancelled_handler,
            order_carrier_updated_handler,
            order_created_handler,
            order_snapshot_changed_handler,
            order_status_changed_handler,
            order_tracking_sync_changed_handler,
        )
        from shared.infrastructure.bus import event_bus

        event_bus.subscribe(OrderSnapshotChanged, order_snapshot_changed_handler)
        event_bus.subscribe(OrderCreated, order_created_handler)
        event_bus.subscribe(OrderCancelled, order_cancelled_handler)
        event_bus.subscribe(OrderStatusChanged, order_status_changed_handler)
        event_bus.subscribe(OrderCarrierUpdated, order_carrier_updated_handler)
        event_bus.subscribe(OrderTrackingSyncChanged, order_tracking_sync_changed_handler)
