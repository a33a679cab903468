import json
from decimal import Decimal

from django.contrib.auth.models import User
from django.db import transaction
from django.test import TestCase

from .inventory import InsufficientStock, StockLine, decrement_stock
from .models import Product, ProductImage, Variant


class ProductImageTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(name="Linen Shirt", category="shirts", price=Decimal("999"))

    def test_color_image_preferred_over_primary(self):
        ProductImage.objects.create(product=self.product, url="https://cdn.example.com/primary.jpg")
        ProductImage.objects.create(product=self.product, url="https://cdn.example.com/blue.jpg", color="Blue")
        self.assertEqual(self.product.image_for("Blue"), "https://cdn.example.com/blue.jpg")
        self.assertEqual(self.product.image_for("Red"), "https://cdn.example.com/primary.jpg")

    def test_relative_urls_are_never_returned(self):
        ProductImage.objects.create(product=self.product, url="/media/primary.jpg")
        self.assertEqual(self.product.image_for(), "")

    def test_slug_is_unique(self):
        other = Product.objects.create(name="Linen Shirt", category="shirts", price=Decimal("999"))
        self.assertEqual(self.product.slug, "linen-shirt")
        self.assertEqual(other.slug, "linen-shirt-1")

    def test_selling_price_uses_sale_price(self):
        self.product.sale_price = Decimal("799")
        self.assertEqual(self.product.selling_price, Decimal("799"))


class DecrementStockTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(name="Tee", category="tees", price=Decimal("499"))
        self.red_m = Variant.objects.create(product=self.product, color="Red", size="M", stock=3)
        self.blue = Variant.objects.create(product=self.product, color="Blue", stock=1)

    def test_decrements_by_ordered_quantity(self):
        decrement_stock([
            StockLine(self.product.pk, "Red", "M", 2),
            StockLine(self.product.pk, "Blue", "", 1),
        ])
        self.red_m.refresh_from_db()
        self.blue.refresh_from_db()
        self.assertEqual(self.red_m.stock, 1)
        self.assertEqual(self.blue.stock, 0)

    def test_insufficient_stock_rolls_back_earlier_lines(self):
        with self.assertRaises(InsufficientStock) as ctx:
            with transaction.atomic():
                decrement_stock([
                    StockLine(self.product.pk, "Red", "M", 2),
                    StockLine(self.product.pk, "Blue", "", 2),
                ])
        self.assertEqual(ctx.exception.code, "insufficient_stock")
        self.red_m.refresh_from_db()
        self.assertEqual(self.red_m.stock, 3)

    def test_untracked_variant_is_skipped(self):
        decrement_stock([StockLine(self.product.pk, "Green", "XL", 5)])
        self.assertEqual(Variant.objects.filter(product=self.product).count(), 2)


class StockApiTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(name="Hoodie", category="winter", price=Decimal("1499"))
        Variant.objects.create(product=self.product, color="Black", size="M", stock=4)
        Variant.objects.create(product=self.product, color="Black", size="L", stock=2)
        Variant.objects.create(product=self.product, color="Grey", size="M", stock=0)
        self.admin = User.objects.create_user("admin", "admin@example.com", "pass", is_staff=True)
        self.customer = User.objects.create_user("alice", "alice@example.com", "pass")

    def _patch(self, payload):
        return self.client.patch(
            f"/catalog/products/{self.product.pk}/stock",
            data=json.dumps(payload),
            content_type="application/json",
        )

    def test_variants_grouped_by_color(self):
        response = self.client.get(f"/catalog/products/{self.product.pk}/variants")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["totalStock"], 6)
        self.assertEqual(data["totalVariants"], 3)
        self.assertEqual(len(data["variantsByColor"]["Black"]), 2)
        self.assertEqual(data["variants"][0]["sku"], f"SKU-{self.product.pk:04d}-Black-M")

    def test_stock_update_requires_admin(self):
        self.client.force_login(self.customer)
        response = self._patch({"updateKind": "index", "variantIndex": 0, "stock": 9})
        self.assertEqual(response.status_code, 403)

    def test_update_by_index(self):
        self.client.force_login(self.admin)
        response = self._patch({"updateKind": "index", "variantIndex": 2, "stock": 7})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Variant.objects.get(color="Grey").stock, 7)

    def test_update_by_variant(self):
        self.client.force_login(self.admin)
        response = self._patch({"updateKind": "variant", "color": "Black", "size": "L", "stock": 11})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Variant.objects.get(color="Black", size="L").stock, 11)
        self.assertEqual(Variant.objects.get(color="Black", size="M").stock, 4)

    def test_update_by_color_sets_every_size(self):
        self.client.force_login(self.admin)
        response = self._patch({"updateKind": "color", "color": "Black", "stock": 5})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["variants"]), 2)
        self.assertEqual(set(Variant.objects.filter(color="Black").values_list("stock", flat=True)), {5})

    def test_unknown_kind_is_rejected(self):
        self.client.force_login(self.admin)
        response = self._patch({"color": "Black", "stock": 5})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_missing_color_is_not_found(self):
        self.client.force_login(self.admin)
        response = self._patch({"updateKind": "color", "color": "Pink", "stock": 5})
        self.assertEqual(response.status_code, 404)
