import json
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase
from django.utils import timezone

from .evaluator import (
    PROMOTION_EXPIRED,
    PROMOTION_INACTIVE,
    PROMOTION_MIN_PURCHASE_NOT_MET,
    PROMOTION_NOT_FOUND,
    PROMOTION_NOT_STARTED,
    PROMOTION_USAGE_LIMIT_REACHED,
    evaluate_promotion,
    redeem_promotion,
)
from .models import Promotion


def make_promotion(**overrides):
    fields = {
        "code": "SAVE10",
        "description": "Ten percent off",
        "discount_type": "percentage",
        "discount_value": Decimal("10"),
    }
    fields.update(overrides)
    return Promotion.objects.create(**fields)


class EvaluatePromotionTests(TestCase):
    def test_percentage_discount(self):
        make_promotion()
        result = evaluate_promotion("save10", Decimal("1000"))
        self.assertTrue(result.valid)
        self.assertEqual(result.discount_amount, Decimal("100.00"))
        self.assertEqual(result.code, "SAVE10")

    def test_code_is_stored_uppercase(self):
        promotion = make_promotion(code=" welcome ")
        self.assertEqual(promotion.code, "WELCOME")

    def test_fixed_discount_is_clamped_to_subtotal(self):
        make_promotion(code="FLAT500", discount_type="fixed", discount_value=Decimal("500"))
        result = evaluate_promotion("FLAT500", Decimal("300"))
        self.assertTrue(result.valid)
        self.assertEqual(result.discount_amount, Decimal("300.00"))

    def test_unknown_code(self):
        self.assertEqual(evaluate_promotion("NOPE", Decimal("100")).reason, PROMOTION_NOT_FOUND)

    def test_validation_order(self):
        now = timezone.now()
        make_promotion(code="OFF", is_active=False)
        make_promotion(code="SOON", start_date=now + timedelta(days=1))
        make_promotion(code="OLD", start_date=now - timedelta(days=10), end_date=now - timedelta(days=1))
        make_promotion(code="USED", usage_limit=2, times_used=2)
        make_promotion(code="BIG", min_purchase=Decimal("2000"))

        self.assertEqual(evaluate_promotion("OFF", 5000).reason, PROMOTION_INACTIVE)
        self.assertEqual(evaluate_promotion("SOON", 5000).reason, PROMOTION_NOT_STARTED)
        self.assertEqual(evaluate_promotion("OLD", 5000).reason, PROMOTION_EXPIRED)
        self.assertEqual(evaluate_promotion("USED", 5000).reason, PROMOTION_USAGE_LIMIT_REACHED)
        self.assertEqual(evaluate_promotion("BIG", 1999).reason, PROMOTION_MIN_PURCHASE_NOT_MET)
        self.assertTrue(evaluate_promotion("BIG", 2000).valid)

    def test_inactive_wins_over_expired(self):
        now = timezone.now()
        make_promotion(code="BOTH", is_active=False, end_date=now - timedelta(days=1))
        self.assertEqual(evaluate_promotion("BOTH", 100).reason, PROMOTION_INACTIVE)


class RedeemPromotionTests(TestCase):
    def test_usage_never_exceeds_limit(self):
        promotion = make_promotion(usage_limit=3)
        for _ in range(3):
            self.assertTrue(evaluate_promotion("SAVE10", 100).valid)
            self.assertTrue(redeem_promotion(promotion))

        promotion.refresh_from_db()
        self.assertEqual(promotion.times_used, 3)
        self.assertEqual(evaluate_promotion("SAVE10", 100).reason, PROMOTION_USAGE_LIMIT_REACHED)
        self.assertFalse(redeem_promotion(promotion))
        promotion.refresh_from_db()
        self.assertEqual(promotion.times_used, 3)

    def test_unlimited_promotion_counts_every_use(self):
        promotion = make_promotion()
        for _ in range(5):
            redeem_promotion(promotion)
        promotion.refresh_from_db()
        self.assertEqual(promotion.times_used, 5)


class PromotionApiTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user("admin", "admin@example.com", "pass", is_staff=True)

    def _post(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type="application/json")

    def test_apply_does_not_count_usage(self):
        promotion = make_promotion()
        response = self._post("/promotions/apply", {"code": "save10", "cartTotal": 1000})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["discount"], 100.0)
        promotion.refresh_from_db()
        self.assertEqual(promotion.times_used, 0)

    def test_apply_unknown_code_is_404(self):
        response = self._post("/promotions/apply", {"code": "MISSING", "cartTotal": 1000})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], PROMOTION_NOT_FOUND)

    def test_apply_requires_code(self):
        response = self._post("/promotions/apply", {"cartTotal": 1000})
        self.assertEqual(response.status_code, 400)

    def test_admin_create_and_duplicate(self):
        self.client.force_login(self.admin)
        payload = {"code": "fest20", "description": "Festival", "discountType": "percentage", "discountValue": 20}
        response = self._post("/promotions/", payload)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["promotion"]["code"], "FEST20")

        response = self._post("/promotions/", payload)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "duplicate_code")

    def test_list_requires_admin(self):
        response = self.client.get("/promotions/")
        self.assertEqual(response.status_code, 401)
