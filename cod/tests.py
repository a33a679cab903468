import json
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from .calculator import (
    ABOVE_MAX_ORDER_VALUE,
    BELOW_MIN_ORDER_VALUE,
    CATEGORY_EXCLUDED,
    COD_DISABLED,
    DAY_NOT_ALLOWED,
    PINCODE_EXCLUDED,
    PRODUCT_EXCLUDED,
    STATE_EXCLUDED,
    TIME_NOT_ALLOWED,
    CodItem,
    calculate_cod_charge,
    is_cod_available,
)
from .models import PaymentSettings
from .policy import CodPolicy, CourierCharge, Tier, TimeWindow, Zone
from .repository import PaymentSettingsRepository

# Sunday 18 October 2026
SUNDAY_MORNING = timezone.make_aware(datetime(2026, 10, 18, 10, 30))
SUNDAY_NIGHT = timezone.make_aware(datetime(2026, 10, 18, 21, 0))


class CodAvailabilityTests(SimpleTestCase):
    def setUp(self):
        self.policy = CodPolicy(min_order_value=Decimal("200"), max_order_value=Decimal("5000"))

    def test_disabled_wins_over_everything(self):
        policy = replace(self.policy, enabled=False)
        for value in (0, 1000, 999999):
            result = is_cod_available(policy, value, "110001", "Delhi", "Delhi")
            self.assertFalse(result.available)
            self.assertEqual(result.reason, "COD is disabled")
            self.assertEqual(result.code, COD_DISABLED)

    def test_order_value_bounds(self):
        for value in (0, 100, Decimal("199.99")):
            self.assertEqual(is_cod_available(self.policy, value).code, BELOW_MIN_ORDER_VALUE)
        for value in (Decimal("5000.01"), 6000, 100000):
            self.assertEqual(is_cod_available(self.policy, value).code, ABOVE_MAX_ORDER_VALUE)
        for value in (200, 2500, 5000):
            self.assertTrue(is_cod_available(self.policy, value).available)

    def test_no_max_order_value(self):
        policy = replace(self.policy, max_order_value=None)
        self.assertTrue(is_cod_available(policy, 10 ** 7).available)

    def test_excluded_locations(self):
        policy = replace(self.policy, excluded_pincodes=frozenset({"400001"}), excluded_states=frozenset({"Goa"}))
        self.assertEqual(is_cod_available(policy, 1000, "400001", "Maharashtra").code, PINCODE_EXCLUDED)
        self.assertEqual(is_cod_available(policy, 1000, "403001", "Goa").code, STATE_EXCLUDED)

    def test_time_window(self):
        window = TimeWindow(enabled=True, start_time="09:00", end_time="18:00", days_of_week=(0, 6))
        policy = replace(self.policy, time_window=window)
        self.assertTrue(is_cod_available(policy, 1000, order_time=SUNDAY_MORNING).available)
        self.assertEqual(is_cod_available(policy, 1000, order_time=SUNDAY_NIGHT).code, TIME_NOT_ALLOWED)

        weekdays_only = replace(policy, time_window=replace(window, days_of_week=(1, 2, 3, 4, 5)))
        self.assertEqual(is_cod_available(weekdays_only, 1000, order_time=SUNDAY_MORNING).code, DAY_NOT_ALLOWED)

    def test_naive_order_time_is_read_as_store_local(self):
        window = TimeWindow(enabled=True, start_time="09:00", end_time="18:00", days_of_week=(0,))
        policy = replace(self.policy, time_window=window)
        self.assertTrue(is_cod_available(policy, 1000, order_time=datetime(2026, 10, 18, 10, 30)).available)
        self.assertEqual(
            is_cod_available(policy, 1000, order_time=datetime(2026, 10, 18, 21, 0)).code, TIME_NOT_ALLOWED,
        )

    def test_excluded_products_and_categories(self):
        policy = replace(self.policy, excluded_products=frozenset({"7"}), excluded_categories=frozenset({"jewellery"}))
        items = [CodItem("3", "Tee", "tees"), CodItem(7, "Ring", "")]
        result = is_cod_available(policy, 1000, items=items)
        self.assertEqual(result.code, PRODUCT_EXCLUDED)
        self.assertEqual(result.reason, "COD not available for product Ring")
        self.assertEqual(is_cod_available(policy, 1000, items=[CodItem("9", "Chain", "jewellery")]).code, CATEGORY_EXCLUDED)


class CodChargeTests(SimpleTestCase):
    def test_fixed(self):
        self.assertEqual(calculate_cod_charge(CodPolicy(), 1000), Decimal("50.00"))

    def test_disabled_is_free(self):
        self.assertEqual(calculate_cod_charge(CodPolicy(enabled=False), 1000), Decimal("0.00"))

    def test_percentage_stays_within_bounds(self):
        policy = CodPolicy(pricing_type="percentage", percentage=Decimal("2.5"),
                           min_charge=Decimal("30"), max_charge=Decimal("200"))
        for value in (0, 1, 500, 1200, 1999, 4000, 8000, 9999, 50000, 10 ** 6):
            charge = calculate_cod_charge(policy, value)
            self.assertGreaterEqual(charge, Decimal("30"))
            self.assertLessEqual(charge, Decimal("200"))
        self.assertEqual(calculate_cod_charge(policy, 4000), Decimal("100.00"))

    def test_tiered(self):
        policy = CodPolicy(pricing_type="tiered", tiers=(
            Tier(Decimal("0"), Decimal("500"), Decimal("30")),
            Tier(Decimal("500"), None, Decimal("60")),
        ))
        self.assertEqual(calculate_cod_charge(policy, 800), Decimal("60.00"))
        self.assertEqual(calculate_cod_charge(policy, 300), Decimal("30.00"))

    def test_unmatched_tier_and_dynamic_fall_back_to_fixed(self):
        policy = CodPolicy(pricing_type="tiered", fixed_amount=Decimal("45"),
                           tiers=(Tier(Decimal("1000"), Decimal("2000"), Decimal("80")),))
        self.assertEqual(calculate_cod_charge(policy, 100), Decimal("45.00"))
        self.assertEqual(calculate_cod_charge(CodPolicy(pricing_type="dynamic"), 100), Decimal("50.00"))

    def test_zone_beats_courier_and_tier(self):
        policy = CodPolicy(
            pricing_type="tiered",
            tiers=(Tier(Decimal("0"), None, Decimal("99")),),
            location_based_enabled=True,
            zones=(Zone(name="Metro", charge=Decimal("25"), cities=("Mumbai",)),),
            courier_charges_enabled=True,
            couriers=(CourierCharge(name="Delhivery", code="DL", percentage=Decimal("5")),),
        )
        self.assertEqual(calculate_cod_charge(policy, 1000, city="Mumbai", courier_code="DL"), Decimal("25.00"))
        self.assertEqual(calculate_cod_charge(policy, 1000, city="Pune", courier_code="DL"), Decimal("50.00"))
        self.assertEqual(calculate_cod_charge(policy, 1000, city="Pune"), Decimal("99.00"))

    def test_percentage_zone_is_clamped_to_zone_bounds(self):
        policy = CodPolicy(
            pricing_type="percentage",
            percentage=Decimal("10"),
            location_based_enabled=True,
            zones=(Zone(name="North", charge=Decimal("40"), states=("Punjab",),
                        min_charge=Decimal("20"), max_charge=Decimal("70")),),
        )
        self.assertEqual(calculate_cod_charge(policy, 5000, state="Punjab"), Decimal("70.00"))
        self.assertEqual(calculate_cod_charge(policy, 100, state="Punjab"), Decimal("20.00"))

    def test_disabled_courier_is_ignored(self):
        policy = CodPolicy(
            courier_charges_enabled=True,
            couriers=(CourierCharge(name="Blue Dart", code="BD", percentage=Decimal("5"), enabled=False),),
        )
        self.assertEqual(calculate_cod_charge(policy, 1000, courier_code="BD"), Decimal("50.00"))

    def test_broken_policy_degrades_to_zero(self):
        policy = CodPolicy(pricing_type="percentage", percentage="not-a-number")
        with self.assertLogs("cod.calculator", level="ERROR"):
            self.assertEqual(calculate_cod_charge(policy, 1000), Decimal("0.00"))


class PaymentSettingsRepositoryTests(TestCase):
    def setUp(self):
        self.repository = PaymentSettingsRepository()

    def test_default_row_created_once(self):
        first = self.repository.get_or_create_default()
        second = self.repository.get_or_create_default()
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(PaymentSettings.objects.count(), 1)

    def test_policy_reflects_stored_tiers(self):
        row = self.repository.get_or_create_default()
        row.pricing_type = "tiered"
        row.tiers = [{"minAmount": 0, "maxAmount": 500, "charge": 30}, {"minAmount": 500, "charge": 60}]
        row.save()
        self.assertEqual(calculate_cod_charge(self.repository.load_policy(), 800), Decimal("60.00"))

    def test_record_cod_order_updates_analytics(self):
        self.repository.record_cod_order(Decimal("50"), Decimal("950"))
        row = self.repository.record_cod_order(Decimal("30"), Decimal("530"))
        self.assertEqual(row.total_cod_orders, 2)
        self.assertEqual(row.total_cod_revenue, Decimal("1480.00"))
        self.assertEqual(row.average_cod_charge, Decimal("40.00"))
        self.assertIsNotNone(row.analytics_updated_at)


class CodApiTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user("admin", "admin@example.com", "pass", is_staff=True)

    def _put(self, url, payload):
        return self.client.put(url, data=json.dumps(payload), content_type="application/json")

    def test_update_settings_merges_partial_payload(self):
        self.client.force_login(self.admin)
        response = self._put("/cod/settings", {"cod": {
            "pricing": {"type": "percentage", "percentage": 3},
            "rules": {"excludedStates": ["Goa"], "timeRestrictions": {"enabled": True, "daysOfWeek": [1, 2]}},
        }})
        self.assertEqual(response.status_code, 200)
        cod = response.json()["cod"]
        self.assertEqual(cod["pricing"]["type"], "percentage")
        self.assertEqual(cod["pricing"]["fixedAmount"], 50.0)
        self.assertEqual(cod["rules"]["excludedStates"], ["Goa"])
        self.assertEqual(cod["rules"]["timeRestrictions"]["daysOfWeek"], [1, 2])

    def test_invalid_settings_rejected(self):
        self.client.force_login(self.admin)
        response = self._put("/cod/settings", {"cod": {"pricing": {"type": "free"}}})
        self.assertEqual(response.status_code, 400)
        response = self._put("/cod/settings", {"cod": {"rules": {"timeRestrictions": {"startTime": "9am"}}}})
        self.assertEqual(response.status_code, 400)

    def test_settings_are_admin_only(self):
        self.assertEqual(self.client.get("/cod/settings").status_code, 401)
        self.client.force_login(User.objects.create_user("bob", "bob@example.com", "pass"))
        self.assertEqual(self.client.get("/cod/settings").status_code, 403)

    def test_online_payment_toggle(self):
        self.client.force_login(self.admin)
        self.assertEqual(self._put("/cod/online-payment", {"enabled": False}).status_code, 200)
        self.client.logout()
        response = self.client.get("/cod/online-payment-status")
        self.assertEqual(response.json()["enabled"], False)

    def test_summary(self):
        PaymentSettingsRepository().record_cod_order(Decimal("50"), Decimal("1050"))
        self.client.force_login(self.admin)
        summary = self.client.get("/cod/summary").json()["summary"]
        self.assertEqual(summary["totalCodOrders"], 1)
        self.assertEqual(summary["averageCodCharge"], 50.0)
