import hashlib
import hmac
import json
import re
import time
from datetime import datetime, timedelta
from decimal import Decimal
from smtplib import SMTPException
from unittest import mock

from django.contrib.auth.models import User
from django.core import mail
from django.core.cache import caches
from django.test import TestCase, override_settings
from django.utils import timezone

from catalog.inventory import InsufficientStock
from catalog.models import Product, ProductImage, Variant
from cod.models import PaymentSettings
from cod.repository import PaymentSettingsRepository
from promotions.models import Promotion
from storefront.exceptions import CarrierError, Forbidden, NotFound, RuleViolation, ValidationFailed

from .lifecycle import OrderLifecycle
from .models import LookupKey, Order, OrderItem, generate_order_id
from .razorpay_utils import generate_payment_signature, to_minor_units, verify_payment_signature
from .services import OrderService
from .shiprocket_utils import ShiprocketAPI, ShiprocketTokenStore

CARRIER_BASE = "https://carrier.test"

CARRIER_SETTINGS = {
    "SHIPROCKET_BASE_URL": CARRIER_BASE,
    "SHIPROCKET_EMAIL": "ops@example.com",
    "SHIPROCKET_API_PASSWORD": "carrier-password",
    "SHIPROCKET_WEBHOOK_SECRET": "",
    "CACHES": {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache", "LOCATION": "default-tests"},
        "carrier": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache", "LOCATION": "carrier-tests"},
    },
}

ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "addressLine1": "12 Lake Road",
    "city": "Kolkata",
    "state": "West Bengal",
    "postalCode": "700029",
    "country": "India",
}


def fake_response(status=200, data=None):
    response = mock.Mock()
    response.status_code = status
    response.ok = status < 400
    response.json.return_value = {} if data is None else data
    response.text = json.dumps(response.json.return_value)
    return response


class FakeCarrier:
    """Replaces ``requests.request``; answers by URL path.

    A list of responses is consumed in order, the last one repeating.
    """

    def __init__(self, routes=None):
        self.routes = {"/auth/login": fake_response(data={"token": "tok-1234567890"})}
        self.routes.update(routes or {})
        self.calls = []

    def __call__(self, method, url, **kwargs):
        path = url[len(CARRIER_BASE):]
        self.calls.append((method, path, kwargs))
        response = self.routes.get(path)
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if response is None:
            return fake_response(404, {"message": f"No route for {path}"})
        if isinstance(response, Exception):
            raise response
        return response

    def paths(self):
        return [path for _, path, _ in self.calls]

    def payload_for(self, path):
        for _, called, kwargs in self.calls:
            if called == path:
                return kwargs.get("json")
        return None


SERVICEABLE = fake_response(data={"data": {"available_courier_companies": [
    {"courier_name": "Delhivery Surface", "courier_company_id": 12},
    {"courier_name": "Xpressbees", "courier_company_id": 33},
]}})


def make_order(**overrides):
    fields = {
        "email": "asha@example.com",
        "full_name": "Asha Rao",
        "phone_number": "9876543210",
        "address_line1": "12 Lake Road",
        "city": "Kolkata",
        "state": "West Bengal",
        "pin_code": "700029",
        "subtotal": Decimal("1000"),
        "total": Decimal("1000"),
    }
    fields.update(overrides)
    return Order.objects.create(**fields)


# ==================== MODEL ====================

class OrderModelTests(TestCase):
    def test_order_id_format(self):
        now = timezone.make_aware(datetime(2026, 10, 18, 9, 5, 7, 123000))
        order_id = generate_order_id(now)
        self.assertRegex(order_id, r"^ORD-\d{17}-[0-9A-F]{6}$")

    def test_order_id_assigned_on_save_and_unique(self):
        first, second = make_order(), make_order()
        self.assertTrue(first.order_id.startswith("ORD-"))
        self.assertNotEqual(first.order_id, second.order_id)

    def test_resolve_by_order_id_or_primary_key(self):
        order = make_order(shiprocket_order_id="SR-77")
        self.assertEqual(Order.objects.resolve(order.order_id), order)
        self.assertEqual(Order.objects.resolve(str(order.pk)), order)
        self.assertEqual(Order.objects.resolve("SR-77", key=LookupKey.CARRIER_ORDER_ID), order)
        with self.assertRaises(NotFound):
            Order.objects.resolve("ORD-missing")

    def test_terminal_states_reject_transitions(self):
        order = make_order(status=Order.STATUS_DELIVERED)
        with self.assertRaises(RuleViolation) as ctx:
            order.transition_to(Order.STATUS_CANCELLED)
        self.assertEqual(ctx.exception.code, "invalid_transition")
        self.assertFalse(order.transition_to(Order.STATUS_DELIVERED))

    def test_item_image_prefers_color_image_and_drops_relative_urls(self):
        product = Product.objects.create(name="Kurta", category="ethnic", price=Decimal("800"))
        ProductImage.objects.create(product=product, url="https://cdn.example.com/kurta.jpg")
        ProductImage.objects.create(product=product, url="https://cdn.example.com/kurta-green.jpg", color="Green")
        order = make_order()
        green = OrderItem.objects.create(order=order, product=product, name="Kurta", price=800, color="Green")
        orphan = OrderItem.objects.create(order=order, name="Old", price=100, image_url="/media/old.jpg")
        self.assertEqual(green.display_image, "https://cdn.example.com/kurta-green.jpg")
        self.assertEqual(orphan.display_image, "")


# ==================== CHECKOUT ====================

class OrderServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user("asha", "asha@example.com", "pass")
        self.product = Product.objects.create(name="Block Print Tee", category="tees", price=Decimal("500"))
        ProductImage.objects.create(product=self.product, url="https://cdn.example.com/tee.jpg")
        self.variant = Variant.objects.create(product=self.product, color="Red", size="M", stock=100)
        self.save10 = Promotion.objects.create(
            code="SAVE10", description="Ten off", discount_type="percentage", discount_value=Decimal("10"),
        )
        self.repository = PaymentSettingsRepository()
        self.repository.get_or_create_default()
        self.service = OrderService(settings_repository=self.repository)

    def cart(self, quantity=2, **overrides):
        line = {"id": self.product.pk, "name": "Block Print Tee", "price": 1, "quantity": quantity,
                "color": "Red", "size": "M"}
        line.update(overrides)
        return [line]

    def place(self, cart=None, payment_method="cod", promo_code=None):
        return self.service.create_order(
            self.user, cart or self.cart(), dict(ADDRESS), payment_method, promo_code=promo_code,
        )

    def test_save10_with_fixed_cod_charge(self):
        order = self.place(promo_code="save10")
        self.assertEqual(order.subtotal, Decimal("1000"))
        self.assertEqual(order.discount, Decimal("100"))
        self.assertEqual(order.cod_charge, Decimal("50"))
        self.assertEqual(order.total, Decimal("950"))
        self.assertEqual(order.discount_code, "SAVE10")
        self.save10.refresh_from_db()
        self.assertEqual(self.save10.times_used, 1)

    def test_catalog_price_overrides_client_price(self):
        order = self.place(cart=self.cart(quantity=1, price=5))
        self.assertEqual(order.items.get().price, Decimal("500"))

    def test_total_identity_holds_for_every_combination(self):
        Promotion.objects.create(
            code="FLAT5000", description="More than the cart", discount_type="fixed", discount_value=Decimal("5000"),
        )
        for payment_method in ("cod", "online"):
            for promo in (None, "SAVE10", "FLAT5000", "NOPE"):
                with self.subTest(payment_method=payment_method, promo=promo):
                    order = self.place(cart=self.cart(quantity=1), payment_method=payment_method, promo_code=promo)
                    order.refresh_from_db()
                    self.assertEqual(order.total, order.subtotal - order.discount + order.cod_charge)
                    self.assertGreaterEqual(order.total, 0)

    def test_fixed_discount_is_clamped_to_subtotal(self):
        Promotion.objects.create(
            code="FLAT5000", description="More than the cart", discount_type="fixed", discount_value=Decimal("5000"),
        )
        order = self.place(cart=self.cart(quantity=1), payment_method="online", promo_code="FLAT5000")
        self.assertEqual(order.discount, Decimal("500"))
        self.assertEqual(order.total, Decimal("0"))

    def test_invalid_promo_is_ignored(self):
        order = self.place(promo_code="NOPE")
        self.assertEqual(order.discount, Decimal("0"))
        self.assertIsNone(order.discount_code)

    def test_usage_limit_is_never_exceeded(self):
        Promotion.objects.create(
            code="TWICE", description="Two uses", discount_type="fixed", discount_value=Decimal("100"), usage_limit=2,
        )
        orders = [self.place(cart=self.cart(quantity=1), promo_code="TWICE") for _ in range(3)]
        self.assertEqual([o.discount for o in orders], [Decimal("100"), Decimal("100"), Decimal("0")])
        self.assertEqual(Promotion.objects.get(code="TWICE").times_used, 2)

    def test_lost_redemption_race_drops_discount(self):
        with mock.patch("orders.services.redeem_promotion", return_value=False):
            order = self.place(promo_code="SAVE10")
        order.refresh_from_db()
        self.assertEqual(order.discount, Decimal("0"))
        self.assertIsNone(order.discount_code)
        self.assertEqual(order.total, Decimal("1050"))

    def test_stock_is_decremented(self):
        self.place(cart=self.cart(quantity=3))
        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock, 97)

    def test_insufficient_stock_rolls_back_order_and_promotion(self):
        self.variant.stock = 1
        self.variant.save()
        with self.assertRaises(InsufficientStock) as ctx:
            self.place(cart=self.cart(quantity=2), promo_code="SAVE10")
        self.assertEqual(ctx.exception.code, "insufficient_stock")
        self.assertFalse(Order.objects.exists())
        self.save10.refresh_from_db()
        self.assertEqual(self.save10.times_used, 0)
        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock, 1)

    def test_unknown_product_uses_cart_price_and_is_untracked(self):
        cart = [{"id": "legacy-42", "name": "Gift Wrap", "price": 250, "quantity": 2}]
        order = self.place(cart=cart, payment_method="online")
        self.assertEqual(order.subtotal, Decimal("500"))
        self.assertIsNone(order.items.get().product)

    def test_missing_line_image_resolved_from_product(self):
        order = self.place(cart=self.cart(quantity=1, image="/uploads/tee.png"))
        self.assertEqual(order.items.get().image_url, "https://cdn.example.com/tee.jpg")

    def test_cod_unavailable_rejects_order(self):
        PaymentSettings.objects.update(cod_enabled=False)
        with self.assertRaises(RuleViolation) as ctx:
            self.place()
        self.assertEqual(ctx.exception.code, "cod_disabled")
        self.assertEqual(ctx.exception.message, "COD is disabled")
        self.assertFalse(Order.objects.exists())

    def test_online_payment_requires_it_enabled(self):
        PaymentSettings.objects.update(online_payment_enabled=False)
        with self.assertRaises(Forbidden):
            self.place(payment_method="online")

    def test_request_validation(self):
        with self.assertRaises(ValidationFailed):
            self.service.create_order(self.user, [], dict(ADDRESS), "cod")
        with self.assertRaises(ValidationFailed):
            self.place(cart=self.cart(quantity=0))
        with self.assertRaises(ValidationFailed):
            self.place(cart=self.cart(quantity=1.5))
        with self.assertRaises(ValidationFailed):
            self.place(payment_method="barter")
        with self.assertRaises(ValidationFailed):
            self.service.create_order(self.user, self.cart(), {"name": "Asha"}, "cod")

    def test_notifications_run_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            order = self.place()
        self.assertEqual(len(callbacks), 3)
        subjects = sorted(message.subject for message in mail.outbox)
        self.assertEqual(subjects, sorted([
            f"Your Order {order.order_id} is confirmed!",
            f"🛒 New Order Received - {order.order_id}",
        ]))
        order.refresh_from_db()
        self.assertTrue(order.customer_notified)
        self.assertEqual(PaymentSettings.objects.get().total_cod_orders, 1)

    def test_email_failure_never_breaks_the_order(self):
        with mock.patch("orders.utils.send_mail", side_effect=SMTPException("smtp down")):
            with self.captureOnCommitCallbacks(execute=True):
                order = self.place()
        order.refresh_from_db()
        self.assertFalse(order.customer_notified)
        self.assertEqual(order.total, Decimal("1050"))

    def test_nothing_queued_when_order_fails(self):
        PaymentSettings.objects.update(cod_enabled=False)
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(RuleViolation):
                self.place()
        self.assertEqual(callbacks, [])
        self.assertEqual(mail.outbox, [])

    def test_check_cod_quote(self):
        quote = self.service.check_cod(self.cart(), ADDRESS)
        self.assertTrue(quote.available)
        self.assertEqual(quote.to_dict()["codCharge"], 50.0)
        self.assertEqual(quote.to_dict()["totalAmount"], 1050.0)

    def test_check_cod_reports_reason(self):
        PaymentSettings.objects.update(excluded_pincodes=["700029"])
        quote = self.service.check_cod(self.cart(), ADDRESS)
        self.assertEqual(quote.to_dict(), {
            "available": False,
            "reason": "COD not available for pincode 700029",
            "code": "pincode_excluded",
        })


class OrderApiTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user("asha", "asha@example.com", "pass")
        self.other = User.objects.create_user("ravi", "ravi@example.com", "pass")
        self.product = Product.objects.create(name="Tote", category="bags", price=Decimal("500"))
        Promotion.objects.create(
            code="SAVE10", description="Ten off", discount_type="percentage", discount_value=Decimal("10"),
        )

    def post(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type="application/json")

    def test_create_order_requires_login(self):
        response = self.post("/orders/", {"cartItems": []})
        self.assertEqual(response.status_code, 401)

    def test_create_order(self):
        self.client.force_login(self.user)
        response = self.post("/orders/", {
            "cartItems": [{"id": self.product.pk, "quantity": 2, "price": 500, "name": "Tote"}],
            "address": ADDRESS,
            "paymentMethod": "cod",
            "promoCode": "SAVE10",
        })
        self.assertEqual(response.status_code, 201)
        order = response.json()["order"]
        self.assertEqual(order["subTotal"], 1000.0)
        self.assertEqual(order["discount"], 100.0)
        self.assertEqual(order["codCharge"], 50.0)
        self.assertEqual(order["total"], 950.0)
        self.assertEqual(order["status"], "pending")

    def test_validation_error_body(self):
        self.client.force_login(self.user)
        response = self.post("/orders/", {"cartItems": [], "address": ADDRESS, "paymentMethod": "cod"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"success": False, "error": "No items in cart", "code": "validation_error"})

    def test_check_cod_endpoint(self):
        self.client.force_login(self.user)
        response = self.post("/orders/check-cod", {
            "cartItems": [{"id": self.product.pk, "quantity": 2, "price": 500, "name": "Tote"}],
            "address": ADDRESS,
        })
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["available"])
        self.assertEqual(body["breakdown"], {"subTotal": 1000.0, "codCharge": 50.0, "total": 1050.0})

    def test_order_info_is_private(self):
        order = make_order(user=self.user)
        self.client.force_login(self.other)
        self.assertEqual(self.client.get(f"/orders/info/{order.order_id}").status_code, 404)
        self.client.force_login(self.user)
        response = self.client.get(f"/orders/info/{order.order_id}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["order"]["orderId"], order.order_id)

    def test_my_orders_and_discount(self):
        mine = make_order(user=self.user, discount=Decimal("100"), discount_code="SAVE10")
        make_order(user=self.other)
        self.client.force_login(self.user)
        orders = self.client.get("/orders/mine").json()["orders"]
        self.assertEqual([o["orderId"] for o in orders], [mine.order_id])

        response = self.client.get(f"/orders/discount/{mine.order_id}")
        self.assertEqual(response.json(), {
            "success": True, "orderId": mine.order_id, "discount": 100.0, "discountCode": "SAVE10",
        })

    def test_order_responses_are_never_cached(self):
        self.client.force_login(self.user)
        response = self.client.get("/orders/mine")
        self.assertIn("no-store", response["Cache-Control"])
        self.assertEqual(response["X-Content-Type-Options"], "nosniff")

    def test_admin_list_is_staff_only(self):
        make_order(user=self.user)
        self.client.force_login(self.user)
        self.assertEqual(self.client.get("/orders/admin/all").status_code, 403)
        admin = User.objects.create_user("admin", "admin@example.com", "pass", is_staff=True)
        self.client.force_login(admin)
        self.assertEqual(len(self.client.get("/orders/admin/all").json()["orders"]), 1)


# ==================== CARRIER ADAPTER ====================

@override_settings(**CARRIER_SETTINGS)
class ShiprocketAPITests(TestCase):
    def setUp(self):
        caches["carrier"].clear()

    def test_token_is_cached_between_calls(self):
        carrier = FakeCarrier({"/courier/serviceability": SERVICEABLE})
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            ShiprocketAPI().check_serviceability("700029")
            ShiprocketAPI().check_serviceability("560001")
        self.assertEqual(carrier.paths().count("/auth/login"), 1)
        self.assertEqual(carrier.calls[1][2]["headers"]["Authorization"], "Bearer tok-1234567890")

    def test_expired_token_is_not_used(self):
        store = ShiprocketTokenStore()
        caches["carrier"].set(store.CACHE_KEY, {"token": "old", "expires_at": time.time() - 1})
        self.assertIsNone(store.get())
        store.save("fresh")
        self.assertEqual(store.get(), "fresh")

    def test_rejected_token_triggers_one_reauthentication(self):
        ShiprocketTokenStore().save("stale")
        carrier = FakeCarrier({
            "/courier/serviceability": [fake_response(401, {"message": "Token expired"}), SERVICEABLE],
        })
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            success, couriers = ShiprocketAPI().check_serviceability("700029")
        self.assertTrue(success)
        self.assertEqual(len(couriers), 2)
        self.assertEqual(carrier.paths(), ["/courier/serviceability", "/auth/login", "/courier/serviceability"])
        self.assertEqual(ShiprocketTokenStore().get(), "tok-1234567890")

    @override_settings(SHIPROCKET_EMAIL=None)
    def test_missing_credentials_fail_the_call(self):
        success, reason = ShiprocketAPI().check_serviceability("700029")
        self.assertFalse(success)
        self.assertEqual(reason, "Shiprocket credentials are not configured")

    def test_unserviceable_pincode(self):
        carrier = FakeCarrier({"/courier/serviceability": fake_response(data={"data": {}})})
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            success, reason = ShiprocketAPI().check_serviceability("000000")
        self.assertFalse(success)
        self.assertEqual(reason, "Pincode not serviceable by Shiprocket")

    def test_connection_errors_are_retried(self):
        import requests

        responses = [requests.exceptions.ConnectionError("reset"), SERVICEABLE]
        carrier = FakeCarrier()

        def flaky(method, url, **kwargs):
            if url.endswith("/courier/serviceability"):
                carrier.calls.append((method, "/courier/serviceability", kwargs))
                outcome = responses.pop(0)
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
            return carrier(method, url, **kwargs)

        with mock.patch("orders.shiprocket_utils.requests.request", new=flaky), \
                mock.patch("orders.shiprocket_utils.time.sleep") as sleep:
            success, _ = ShiprocketAPI().check_serviceability("700029")
        self.assertTrue(success)
        sleep.assert_called_once_with(1)

    def test_writes_are_sent_once_on_timeout(self):
        import requests

        carrier = FakeCarrier({
            "/orders/cancel": requests.exceptions.ReadTimeout("read timed out"),
            "/courier/assign/awb": requests.exceptions.ConnectionError("reset"),
        })
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier), \
                mock.patch("orders.shiprocket_utils.time.sleep") as sleep:
            api = ShiprocketAPI()
            self.assertEqual(api.cancel_orders(["SR-1"]), (False, "Failed to cancel Shiprocket order"))
            self.assertEqual(api.assign_awb("7722"), (False, "Failed to assign AWB"))
        self.assertEqual(carrier.paths().count("/orders/cancel"), 1)
        self.assertEqual(carrier.paths().count("/courier/assign/awb"), 1)
        sleep.assert_not_called()

    def test_cod_surcharge_added_once_to_total(self):
        order = make_order(payment_method="cod", subtotal=Decimal("1000"), cod_charge=Decimal("50"),
                           total=Decimal("1050"))
        OrderItem.objects.create(order=order, name="Tee", price=Decimal("500"), quantity=2, sku="TEE-RED-M")
        payload = ShiprocketAPI().build_order_payload(order, list(order.items.all()))
        self.assertEqual(payload["total"], 1050.0)
        self.assertEqual(payload["cod_charges"], 50.0)
        self.assertEqual(payload["payment_method"], "COD")
        self.assertEqual(payload["order_items"][0]["selling_price"], 500.0)
        self.assertEqual(payload["billing_last_name"], "Rao")

    def test_prepaid_order_has_no_surcharge(self):
        order = make_order(payment_method="online")
        OrderItem.objects.create(order=order, name="Tee", price=Decimal("500"), quantity=2)
        payload = ShiprocketAPI().build_order_payload(order, list(order.items.all()))
        self.assertEqual(payload["total"], 1000.0)
        self.assertNotIn("cod_charges", payload)

    def test_webhook_token_check(self):
        self.assertTrue(ShiprocketAPI.verify_webhook_token(None))
        with override_settings(SHIPROCKET_WEBHOOK_SECRET="s3cret"):
            self.assertFalse(ShiprocketAPI.verify_webhook_token(None))
            self.assertFalse(ShiprocketAPI.verify_webhook_token("nope"))
            self.assertTrue(ShiprocketAPI.verify_webhook_token("s3cret"))


# ==================== LIFECYCLE ====================

@override_settings(**CARRIER_SETTINGS)
class ShipmentLifecycleTests(TestCase):
    def setUp(self):
        caches["carrier"].clear()
        self.order = make_order(payment_method="cod", cod_charge=Decimal("50"), total=Decimal("1050"))
        OrderItem.objects.create(order=self.order, name="Tee", price=Decimal("500"), quantity=2)

    def test_create_shipment(self):
        carrier = FakeCarrier({
            "/courier/serviceability": SERVICEABLE,
            "/orders/create/adhoc": fake_response(data={"order_id": 9911, "shipment_id": 7722}),
        })
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            with self.captureOnCommitCallbacks(execute=True):
                OrderLifecycle().create_shipment(self.order)

        self.order.refresh_from_db()
        self.assertEqual(self.order.shiprocket_order_id, "9911")
        self.assertEqual(self.order.shipment_id, "7722")
        self.assertEqual(self.order.courier_name, "Delhivery Surface")
        self.assertEqual(self.order.status, Order.STATUS_CONFIRMED)
        self.assertEqual(self.order.shipping_status, "Processing")
        self.assertEqual(carrier.payload_for("/orders/create/adhoc")["total"], 1050.0)
        self.assertEqual(mail.outbox[0].subject, f"Order Confirmed & Processing - #{self.order.order_id}")

    def test_create_shipment_failure_marks_shipping_failed(self):
        carrier = FakeCarrier({"/courier/serviceability": fake_response(data={"data": {}})})
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            with self.assertRaises(CarrierError) as ctx:
                OrderLifecycle().create_shipment(self.order)
        self.assertIn("Pincode not serviceable", ctx.exception.message)
        self.order.refresh_from_db()
        self.assertEqual(self.order.shipping_status, "Failed")
        self.assertEqual(self.order.status, Order.STATUS_PENDING)
        self.assertIsNone(self.order.shiprocket_order_id)

    def test_timed_out_shipment_is_not_resent(self):
        import requests

        carrier = FakeCarrier({
            "/courier/serviceability": SERVICEABLE,
            "/orders/create/adhoc": requests.exceptions.ReadTimeout("read timed out"),
        })
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier), \
                mock.patch("orders.shiprocket_utils.time.sleep"):
            with self.assertRaises(CarrierError):
                OrderLifecycle().create_shipment(self.order)
        self.assertEqual(carrier.paths().count("/orders/create/adhoc"), 1)
        self.order.refresh_from_db()
        self.assertEqual(self.order.shipping_status, "Failed")
        self.assertIsNone(self.order.shiprocket_order_id)

    def test_stale_copy_sees_shipment_created_meanwhile(self):
        stale = Order.objects.get(pk=self.order.pk)
        Order.objects.filter(pk=self.order.pk).update(shiprocket_order_id="9911", shipment_id="7722")
        api = mock.Mock()
        with self.assertRaises(RuleViolation) as ctx:
            OrderLifecycle(api_factory=lambda: api).create_shipment(stale)
        self.assertEqual(ctx.exception.code, "shipment_exists")
        api.check_serviceability.assert_not_called()
        api.create_order.assert_not_called()

    def test_existing_shipment_is_refused(self):
        self.order.shiprocket_order_id = "9911"
        with self.assertRaises(RuleViolation) as ctx:
            OrderLifecycle(api_factory=mock.Mock).create_shipment(self.order)
        self.assertEqual(ctx.exception.code, "shipment_exists")

    def test_assign_awb(self):
        self.order.shipment_id = "7722"
        self.order.save()
        carrier = FakeCarrier({"/courier/assign/awb": fake_response(data={
            "awb_assign_status": 1,
            "response": {"data": {"awb_code": "AWB123", "courier_name": "Xpressbees", "courier_company_id": 33}},
        })})
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            OrderLifecycle().assign_awb(self.order)
        self.order.refresh_from_db()
        self.assertEqual(self.order.awb_code, "AWB123")
        self.assertEqual(self.order.courier_id, "33")

    def test_label_url_is_stored(self):
        self.order.shipment_id = "7722"
        self.order.save()
        carrier = FakeCarrier({"/courier/generate/label": fake_response(data={
            "label_created": 1, "label_url": "https://labels.example.com/7722.pdf",
        })})
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            OrderLifecycle().generate_documents(self.order, "label")
        self.order.refresh_from_db()
        self.assertEqual(self.order.label_url, "https://labels.example.com/7722.pdf")

    def test_unknown_document_kind(self):
        with self.assertRaises(ValidationFailed):
            OrderLifecycle(api_factory=mock.Mock).generate_documents(self.order, "receipt")


@override_settings(**CARRIER_SETTINGS)
class CarrierWebhookTests(TestCase):
    def setUp(self):
        self.order = make_order(shiprocket_order_id="SR-5001", status=Order.STATUS_CONFIRMED)
        OrderItem.objects.create(order=self.order, name="Tee", price=Decimal("500"), quantity=2)
        self.payload = {
            "order_id": "SR-5001",
            "awb_code": "AWB777",
            "courier_name": "Delhivery",
            "courier_id": 12,
            "expected_delivery_date": "2026-10-22",
            "pickup_scheduled_date": "2026-10-19 10:00:00",
        }

    def post(self, payload, **headers):
        return self.client.post(
            "/orders/webhook/shiprocket", data=json.dumps(payload), content_type="application/json", **headers,
        )

    def test_missing_awb_is_rejected(self):
        response = self.post({"order_id": "SR-5001"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])
        self.assertIn("error", response.json())

    def test_unknown_order_is_404(self):
        response = self.post({"order_id": "SR-404", "awb_code": "AWB1"})
        self.assertEqual(response.status_code, 404)
        self.assertIn("error", response.json())

    def test_courier_assignment_ships_the_order(self):
        with self.captureOnCommitCallbacks(execute=True):
            response = self.post(self.payload)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            "success": True, "message": "Order updated successfully", "orderId": self.order.order_id,
        })
        self.order.refresh_from_db()
        self.assertEqual(self.order.awb_code, "AWB777")
        self.assertEqual(self.order.courier_name, "Delhivery")
        self.assertEqual(self.order.courier_id, "12")
        self.assertEqual(self.order.status, Order.STATUS_SHIPPED)
        self.assertEqual(self.order.shipping_status, "shipped")
        self.assertEqual(timezone.localtime(self.order.expected_delivery_date).date().isoformat(), "2026-10-22")
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("https://shiprocket.co/tracking/AWB777", mail.outbox[0].body)

    def test_redelivery_is_idempotent(self):
        def snapshot():
            order = Order.objects.get(pk=self.order.pk)
            return (
                order.status, order.shipping_status, order.awb_code, order.courier_name, order.courier_id,
                order.expected_delivery_date, order.pickup_scheduled_date, order.delivered_at, order.tracking_data,
            )

        with self.captureOnCommitCallbacks(execute=True):
            self.post(self.payload)
        first = snapshot()
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            response = self.post(self.payload)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(snapshot(), first)
        self.assertEqual(callbacks, [])
        self.assertEqual(len(mail.outbox), 1)

    def test_falls_back_to_primary_key(self):
        order = make_order()
        response = self.post({"order_id": str(order.pk), "awb_code": "AWB9"})
        self.assertEqual(response.status_code, 200)
        order.refresh_from_db()
        self.assertEqual(order.awb_code, "AWB9")

    def test_delivered_status(self):
        response = self.post({**self.payload, "status": "Delivered"})
        self.assertEqual(response.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_DELIVERED)
        self.assertIsNotNone(self.order.delivered_at)

    def test_in_transit_is_kept_as_shipping_status(self):
        self.post({**self.payload, "status": "IN TRANSIT"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_SHIPPED)
        self.assertEqual(self.order.shipping_status, "in_transit")

    @override_settings(SHIPROCKET_WEBHOOK_SECRET="s3cret")
    def test_shared_token_is_enforced_when_configured(self):
        self.assertEqual(self.post(self.payload).status_code, 401)
        self.assertEqual(self.post(self.payload, HTTP_X_API_KEY="wrong").status_code, 401)
        self.assertEqual(self.post(self.payload, HTTP_X_API_KEY="s3cret").status_code, 200)


@override_settings(**CARRIER_SETTINGS)
class CancellationTests(TestCase):
    def setUp(self):
        caches["carrier"].clear()
        self.user = User.objects.create_user("asha", "asha@example.com", "pass")
        self.admin = User.objects.create_user("admin", "admin@example.com", "pass", is_staff=True)
        self.order = make_order(user=self.user)
        self.lifecycle = OrderLifecycle(api_factory=mock.Mock)

    def test_blocked_once_shipped(self):
        for value in ("shipped", "in_transit", "out_for_delivery", "delivered"):
            with self.subTest(shipping_status=value):
                order = make_order(shipping_status=value)
                with self.assertRaises(RuleViolation) as ctx:
                    self.lifecycle.request_cancellation(order, "Changed my mind")
                self.assertEqual(ctx.exception.code, "order_already_shipped")
        for value in (Order.STATUS_SHIPPED, Order.STATUS_DELIVERED):
            with self.subTest(status=value):
                order = make_order(status=value)
                with self.assertRaises(RuleViolation) as ctx:
                    self.lifecycle.request_cancellation(order, "Changed my mind")
                self.assertEqual(ctx.exception.code, "order_already_shipped")

    def test_blocked_when_awb_assigned(self):
        self.order.awb_code = "AWB1"
        with self.assertRaises(RuleViolation) as ctx:
            self.lifecycle.request_cancellation(self.order, "Changed my mind")
        self.assertEqual(ctx.exception.code, "awb_assigned")

    def test_reason_is_required(self):
        with self.assertRaises(ValidationFailed):
            self.lifecycle.request_cancellation(self.order, "  ")

    def test_request_only_once(self):
        self.lifecycle.request_cancellation(self.order, "Ordered twice")
        self.assertTrue(self.order.cancellation_requested)
        self.assertEqual(self.order.cancellation_reason, "Ordered twice")
        stale = Order.objects.get(pk=self.order.pk)
        stale.cancellation_requested = False
        with self.assertRaises(RuleViolation) as ctx:
            self.lifecycle.request_cancellation(stale, "Again")
        self.assertEqual(ctx.exception.code, "cancellation_already_requested")

    def test_request_endpoint_notifies_admin(self):
        self.client.force_login(self.user)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(
                f"/orders/request-cancellation/{self.order.order_id}",
                data=json.dumps({"reason": "Ordered twice"}), content_type="application/json",
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(mail.outbox[0].to, ["admin@example.com"])
        self.assertEqual(mail.outbox[0].subject, f"Cancellation Request - Order #{self.order.order_id}")

    def test_approve_cancels_carrier_order(self):
        self.order.shiprocket_order_id = "SR-1"
        self.order.cancellation_requested = True
        self.order.save()
        carrier = FakeCarrier({"/orders/cancel": fake_response(data={"status": 200})})
        self.client.force_login(self.admin)
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            response = self.client.post(
                f"/orders/admin/cancellation/{self.order.order_id}/approve",
                data=json.dumps({"adminReason": "Out of stock"}), content_type="application/json",
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "Cancellation request approved successfully")
        self.assertEqual(carrier.payload_for("/orders/cancel"), {"ids": ["SR-1"]})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_CANCELLED)
        self.assertIsNotNone(self.order.cancelled_at)
        self.assertEqual(self.order.admin_cancellation_reason, "Out of stock")

    def test_carrier_failure_does_not_block_cancellation(self):
        self.order.shiprocket_order_id = "SR-1"
        self.order.cancellation_requested = True
        self.order.save()
        carrier = FakeCarrier({"/orders/cancel": fake_response(500, {"message": "Carrier down"})})
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            OrderLifecycle().decide_cancellation(self.order, True, "")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_CANCELLED)
        self.assertEqual(self.order.admin_cancellation_reason, "Cancelled by admin")

    def test_reject_resets_request(self):
        self.order.cancellation_requested = True
        self.order.cancellation_reason = "Ordered twice"
        self.order.save()
        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.decide_cancellation(self.order, False, "Already packed")
        self.order.refresh_from_db()
        self.assertFalse(self.order.cancellation_requested)
        self.assertEqual(self.order.cancellation_reason, "")
        self.assertEqual(self.order.status, Order.STATUS_PENDING)
        self.assertEqual(mail.outbox[0].subject, f"Cancellation Request Rejected - #{self.order.order_id}")

    def test_decision_needs_pending_request(self):
        with self.assertRaises(RuleViolation) as ctx:
            self.lifecycle.decide_cancellation(self.order, True)
        self.assertEqual(ctx.exception.code, "no_cancellation_request")

    def test_admin_cancel(self):
        with self.assertRaises(ValidationFailed):
            self.lifecycle.admin_cancel(self.order, "")
        self.lifecycle.admin_cancel(self.order, "Fraud check failed")
        self.assertEqual(self.order.status, Order.STATUS_CANCELLED)
        with self.assertRaises(RuleViolation) as ctx:
            self.lifecycle.admin_cancel(self.order, "Again")
        self.assertEqual(ctx.exception.code, "order_already_cancelled")

    def test_delivered_order_cannot_be_cancelled(self):
        order = make_order(status=Order.STATUS_DELIVERED)
        with self.assertRaises(RuleViolation) as ctx:
            self.lifecycle.admin_cancel(order, "Too late")
        self.assertEqual(ctx.exception.code, "invalid_transition")


@override_settings(**CARRIER_SETTINGS)
class ReplacementTests(TestCase):
    def setUp(self):
        caches["carrier"].clear()
        self.user = User.objects.create_user("asha", "asha@example.com", "pass")
        self.product = Product.objects.create(
            name="Saree", category="ethnic", price=Decimal("2000"),
            replacement_days=7, replacement_policy="7 day replacement for damaged items",
        )
        self.delivered_at = timezone.make_aware(datetime(2026, 10, 1, 12, 0))
        self.order = make_order(user=self.user, status=Order.STATUS_DELIVERED, delivered_at=self.delivered_at)
        OrderItem.objects.create(order=self.order, product=self.product, name="Saree", price=Decimal("2000"))
        self.lifecycle = OrderLifecycle(api_factory=mock.Mock)

    def test_eligible_on_last_day_only(self):
        on_deadline = self.lifecycle.replacement_eligibility(self.order, now=self.delivered_at + timedelta(days=7))
        self.assertTrue(on_deadline.eligible)
        self.assertEqual(on_deadline.days_remaining, 0)

        day_after = self.lifecycle.replacement_eligibility(self.order, now=self.delivered_at + timedelta(days=8))
        self.assertFalse(day_after.eligible)
        self.assertEqual(day_after.reason, "replacement_period_expired")

    def test_days_remaining(self):
        result = self.lifecycle.replacement_eligibility(self.order, now=self.delivered_at + timedelta(days=2, hours=1))
        self.assertEqual(result.days_remaining, 5)

    def test_not_delivered(self):
        order = make_order(status=Order.STATUS_PENDING)
        self.assertEqual(self.lifecycle.replacement_eligibility(order).reason, "order_not_delivered")

    def test_product_without_policy(self):
        plain = Product.objects.create(name="Socks", category="basics", price=Decimal("99"))
        order = make_order(status=Order.STATUS_DELIVERED, delivered_at=self.delivered_at)
        OrderItem.objects.create(order=order, product=plain, name="Socks", price=Decimal("99"))
        self.assertEqual(
            self.lifecycle.replacement_eligibility(order, now=self.delivered_at).reason, "no_replacement_policy",
        )

    def test_request_and_cancel(self):
        now = self.delivered_at + timedelta(days=1)
        self.lifecycle.request_replacement(self.order, "Torn pallu", now=now)
        self.assertEqual(self.order.replacement_status, "pending")
        self.assertEqual(
            self.lifecycle.replacement_eligibility(self.order, now=now).reason, "replacement_already_requested",
        )
        self.lifecycle.cancel_replacement_request(self.order)
        self.order.refresh_from_db()
        self.assertFalse(self.order.replacement_requested)

    def test_expired_request_is_rejected(self):
        with self.assertRaises(RuleViolation) as ctx:
            self.lifecycle.request_replacement(self.order, "Torn", now=self.delivered_at + timedelta(days=30))
        self.assertEqual(ctx.exception.code, "replacement_period_expired")

    def test_approve_creates_zero_value_shipment(self):
        self.lifecycle.request_replacement(self.order, "Torn pallu", now=self.delivered_at + timedelta(days=1))
        carrier = FakeCarrier({"/orders/create/adhoc": fake_response(data={"order_id": 8001, "shipment_id": 8002})})
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            OrderLifecycle().approve_replacement(self.order, "Send new piece")

        self.order.refresh_from_db()
        self.assertEqual(self.order.replacement_status, "approved")
        self.assertEqual(self.order.replacement_shipment_id, "8002")
        self.assertTrue(re.match(rf"^REP_{self.order.order_id}_\d+$", self.order.replacement_shiprocket_order_id))
        payload = carrier.payload_for("/orders/create/adhoc")
        self.assertEqual(payload["payment_method"], "Prepaid")
        self.assertEqual(payload["order_items"][0]["selling_price"], 0)

    def test_carrier_failure_rejects_replacement(self):
        self.lifecycle.request_replacement(self.order, "Torn pallu", now=self.delivered_at + timedelta(days=1))
        carrier = FakeCarrier({"/orders/create/adhoc": fake_response(422, {"message": "Invalid pincode"})})
        with mock.patch("orders.shiprocket_utils.requests.request", new=carrier):
            with self.assertRaises(CarrierError):
                OrderLifecycle().approve_replacement(self.order)
        self.order.refresh_from_db()
        self.assertEqual(self.order.replacement_status, "rejected")
        self.assertEqual(self.order.replacement_rejection_reason, "Failed to create shipping order: Invalid pincode")

    def test_complete_requires_approval(self):
        self.lifecycle.request_replacement(self.order, "Torn pallu", now=self.delivered_at + timedelta(days=1))
        with self.assertRaises(RuleViolation) as ctx:
            self.lifecycle.complete_replacement(self.order)
        self.assertEqual(ctx.exception.code, "replacement_not_approved")

    def test_reject_requires_reason(self):
        self.lifecycle.request_replacement(self.order, "Torn pallu", now=self.delivered_at + timedelta(days=1))
        with self.assertRaises(ValidationFailed):
            self.lifecycle.reject_replacement(self.order, "")
        self.lifecycle.reject_replacement(self.order, "Wear and tear", "Photos show use")
        self.assertEqual(self.order.replacement_status, "rejected")

    def test_request_endpoint(self):
        self.order.delivered_at = timezone.now() - timedelta(days=1)
        self.order.save()
        self.client.force_login(self.user)
        response = self.client.post(
            f"/replacements/request/{self.order.order_id}",
            data=json.dumps({"reason": "Torn pallu"}), content_type="application/json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["replacementRequest"]["replacementStatus"], "pending")
        mine = self.client.get("/replacements/mine").json()["replacements"]
        self.assertEqual([row["orderId"] for row in mine], [self.order.order_id])


# ==================== PAYMENTS ====================

@override_settings(RAZORPAY_KEY_ID="rzp_test_key", RAZORPAY_KEY_SECRET="rzp_secret")
class PaymentTests(TestCase):
    def test_signature_verification(self):
        expected = hmac.new(b"rzp_secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
        self.assertEqual(generate_payment_signature("order_1", "pay_1"), expected)
        self.assertTrue(verify_payment_signature("order_1", "pay_1", expected))
        self.assertFalse(verify_payment_signature("order_1", "pay_2", expected))

    def test_verify_endpoint(self):
        signature = generate_payment_signature("order_1", "pay_1")
        good = {"razorpay_order_id": "order_1", "razorpay_payment_id": "pay_1", "razorpay_signature": signature}
        response = self.client.post("/payments/verify", data=json.dumps(good), content_type="application/json")
        self.assertEqual(response.status_code, 200)

        bad = {**good, "razorpay_signature": "0" * 64}
        response = self.client.post("/payments/verify", data=json.dumps(bad), content_type="application/json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_signature")

    def test_minor_units(self):
        self.assertEqual(to_minor_units(Decimal("950.50")), 95050)

    def test_create_provider_order(self):
        user = User.objects.create_user("asha", "asha@example.com", "pass")
        self.client.force_login(user)
        provider = fake_response(data={"id": "order_ABC", "amount": 95000, "currency": "INR"})
        with mock.patch("orders.razorpay_utils.requests.request", return_value=provider) as request:
            response = self.client.post(
                "/orders/create-razorpay-order", data=json.dumps({"amount": 950}), content_type="application/json",
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["order_id"], "order_ABC")
        self.assertEqual(request.call_args.kwargs["json"]["amount"], 95000)

    def test_create_provider_order_respects_toggle(self):
        user = User.objects.create_user("asha", "asha@example.com", "pass")
        self.client.force_login(user)
        PaymentSettingsRepository().set_online_payment(False)
        response = self.client.post(
            "/orders/create-razorpay-order", data=json.dumps({"amount": 950}), content_type="application/json",
        )
        self.assertEqual(response.status_code, 403)

        PaymentSettingsRepository().set_online_payment(True)
        response = self.client.post(
            "/orders/create-razorpay-order", data=json.dumps({"amount": -5}), content_type="application/json",
        )
        self.assertEqual(response.status_code, 400)
