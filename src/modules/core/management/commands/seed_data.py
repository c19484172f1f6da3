from __future__ import annotations

import random
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from modules.cart.models import Cart, CartItem
from modules.products.models import Product, ProductStatus


class Command(BaseCommand):
    help = "Seed database with buyers, sellers, a catalog and filled carts for development."

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        buyers, sellers = self._seed_users()
        products = self._seed_products(sellers)
        cart_lines = self._seed_carts(buyers, products)

        self.stdout.write(
            self.style.SUCCESS(
                "Seed completed: "
                f"buyers={len(buyers)}, "
                f"sellers={len(sellers)}, "
                f"products={len(products)}, "
                f"cart_lines={cart_lines}"
            )
        )

    def _seed_users(self):
        User = get_user_model()
        if not User.objects.filter(username="admin").exists():
            User.objects.create_superuser("admin", password="admin123")

        buyers = []
        for name in ("asha", "bilal", "chitra"):
            user, created = User.objects.get_or_create(username=name)
            if created:
                user.set_password(f"{name}123")
                user.save(update_fields=["password"])
            buyers.append(user)

        sellers = []
        for name in ("kirana-traders", "loom-works"):
            user, created = User.objects.get_or_create(username=name)
            if created:
                user.set_password("seller123")
                user.save(update_fields=["password"])
            sellers.append(user)
        return buyers, sellers

    def _seed_products(self, sellers) -> list[Product]:
        self.stdout.write("Creating products...")
        catalog = [
            ("RICE-25", "Basmati Rice 25kg", Decimal("2150.00"), 1, 0),
            ("OIL-15", "Sunflower Oil 15L tin", Decimal("1890.00"), 1, 0),
            ("SUGAR-50", "Sugar 50kg sack", Decimal("2400.00"), 1, 0),
            ("TEA-1", "Assam Tea 1kg", Decimal("420.00"), 12, 0),
            ("TOWEL-01", "Cotton Towel", Decimal("180.00"), 10, 1),
            ("BEDSHEET-02", "Double Bedsheet", Decimal("650.00"), 5, 1),
            ("KURTA-M", "Handloom Kurta (M)", Decimal("540.00"), 6, 1),
        ]
        products = []
        for sku, name, price, lot_size, seller_index in catalog:
            product, _ = Product.objects.get_or_create(
                sku=sku,
                defaults={
                    "seller": sellers[seller_index],
                    "name": name,
                    "price": price,
                    "lot_size": lot_size,
                    "stock_quantity": lot_size * random.randint(5, 40),
                    "status": ProductStatus.ACTIVE,
                },
            )
            products.append(product)
        self.stdout.write(self.style.SUCCESS("Creating products... Done!"))
        return products

    def _seed_carts(self, buyers, products: list[Product]) -> int:
        self.stdout.write("Filling carts...")
        lines = 0
        for buyer in buyers:
            cart, _ = Cart.objects.get_or_create(buyer=buyer)
            for product in random.sample(products, k=3):
                _, created = CartItem.objects.get_or_create(
                    cart=cart,
                    product=product,
                    defaults={
                        "lot_size": product.lot_size,
                        "quantity": random.randint(1, 3),
                    },
                )
                lines += int(created)
        self.stdout.write(self.style.SUCCESS("Filling carts... Done!"))
        return lines
