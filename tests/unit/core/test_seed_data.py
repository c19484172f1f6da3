from io import StringIO

import pytest
from django.contrib.auth import get_user_model
from django.core.management import call_command

from modules.cart.models import CartItem
from modules.products.models import Product

pytestmark = pytest.mark.unit


class TestSeedData:
    def test_seeds_catalog_and_carts(self):
        out = StringIO()
        call_command("seed_data", stdout=out)

        assert Product.objects.count() == 7
        assert all(p.stock_quantity % p.lot_size == 0 for p in Product.objects.all())
        assert CartItem.objects.count() == 9
        assert "Seed completed" in out.getvalue()

    def test_second_run_adds_nothing(self):
        call_command("seed_data", stdout=StringIO())
        users = get_user_model().objects.count()

        call_command("seed_data", stdout=StringIO())

        assert get_user_model().objects.count() == users
        assert Product.objects.count() == 7
        assert CartItem.objects.count() == 9
