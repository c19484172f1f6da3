from django.apps import AppConfig


class CartConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.cart"
    label = "cart"

    def ready(self) -> None:
        from modules.cart.events import CartChanged
        from modules.cart.handlers import cart_changed_handler
        from shared.infrastructure.bus import event_bus

        event_bus.subscribe(CartChanged, cart_changed_handler)
