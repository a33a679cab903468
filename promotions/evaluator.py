"""Discount-code validation and redemption."""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from django.db.models import F, Q
from django.utils import timezone

from .models import Promotion

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")

PROMOTION_NOT_FOUND = "promotion_not_found"
PROMOTION_INACTIVE = "promotion_inactive"
PROMOTION_NOT_STARTED = "promotion_not_started"
PROMOTION_EXPIRED = "promotion_expired"
PROMOTION_USAGE_LIMIT_REACHED = "promotion_usage_limit_reached"
PROMOTION_MIN_PURCHASE_NOT_MET = "promotion_min_purchase_not_met"


@dataclass
class PromotionResult:
    valid: bool
    discount_amount: Decimal = Decimal("0.00")
    reason: Optional[str] = None
    message: str = ""
    code: str = ""
    promotion: Optional[Promotion] = None


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def compute_discount(promotion, subtotal) -> Decimal:
    """Percentage of the subtotal, or a flat amount that never exceeds it"""
    subtotal = to_money(subtotal)
    if promotion.discount_type == "percentage":
        discount = subtotal * promotion.discount_value / Decimal(100)
    else:
        discount = promotion.discount_value
    return to_money(min(max(discount, Decimal(0)), subtotal))


def evaluate_promotion(code, subtotal, now=None) -> PromotionResult:
    """Validate ``code`` against ``subtotal``; the first failing check wins.

    Nothing is written here. Redemption happens at order creation through
    ``redeem_promotion``.
    """
    normalized = (code or "").strip().upper()
    now = now or timezone.now()
    subtotal = to_money(subtotal)

    promotion = Promotion.objects.filter(code=normalized).first() if normalized else None
    if promotion is None:
        return PromotionResult(False, reason=PROMOTION_NOT_FOUND, message="Invalid promotion code.", code=normalized)

    def reject(reason, message):
        return PromotionResult(False, reason=reason, message=message, code=promotion.code, promotion=promotion)

    if not promotion.is_active:
        return reject(PROMOTION_INACTIVE, "This promotion is not active.")
    if promotion.start_date and promotion.start_date > now:
        return reject(PROMOTION_NOT_STARTED, "This promotion has not started yet.")
    if promotion.end_date and promotion.end_date < now:
        return reject(PROMOTION_EXPIRED, "This promotion has expired.")
    if promotion.has_usage_limit and promotion.times_used >= promotion.usage_limit:
        return reject(PROMOTION_USAGE_LIMIT_REACHED, "This promotion has reached its usage limit.")
    if subtotal < promotion.min_purchase:
        return reject(
            PROMOTION_MIN_PURCHASE_NOT_MET,
            f"A minimum purchase of ₹{promotion.min_purchase} is required.",
        )

    return PromotionResult(
        True,
        discount_amount=compute_discount(promotion, subtotal),
        message="Promotion applied successfully!",
        code=promotion.code,
        promotion=promotion,
    )


def redeem_promotion(promotion) -> bool:
    """Count one use of ``promotion``.

    The increment is a single conditional UPDATE, so the counter never passes
    the usage limit even when two checkouts race for the last use.
    """
    unlimited = Q(usage_limit__isnull=True) | Q(usage_limit=0)
    updated = (
        Promotion.objects.filter(pk=promotion.pk)
        .filter(unlimited | Q(times_used__lt=F("usage_limit")))
        .update(times_used=F("times_used") + 1)
    )
    if updated:
        logger.info(f"Promotion {promotion.code} redeemed")
        return True
    logger.warning(f"Promotion {promotion.code} could not be redeemed: usage limit reached")
    return False
