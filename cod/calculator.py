"""Cash-on-delivery eligibility and surcharge rules.

Pure functions over a ``CodPolicy``: no database access and no settings
lookups, so every rule can be exercised with a hand-built policy.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from django.utils import timezone

from .policy import CodPolicy

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")

COD_DISABLED = "cod_disabled"
BELOW_MIN_ORDER_VALUE = "below_min_order_value"
ABOVE_MAX_ORDER_VALUE = "above_max_order_value"
PINCODE_EXCLUDED = "pincode_excluded"
STATE_EXCLUDED = "state_excluded"
DAY_NOT_ALLOWED = "day_not_allowed"
TIME_NOT_ALLOWED = "time_not_allowed"
PRODUCT_EXCLUDED = "product_excluded"
CATEGORY_EXCLUDED = "category_excluded"


@dataclass(frozen=True)
class CodAvailability:
    available: bool
    reason: Optional[str] = None
    code: Optional[str] = None


@dataclass(frozen=True)
class CodItem:
    """The part of a cart line the rules look at"""

    product_id: Optional[str]
    name: str = ""
    category: str = ""


AVAILABLE = CodAvailability(True)


def _unavailable(code, reason):
    return CodAvailability(False, reason=reason, code=code)


def _fmt(amount):
    amount = Decimal(amount)
    return f"{amount:.0f}" if amount == amount.to_integral_value() else f"{amount:.2f}"


def clamp(value, lower, upper):
    return max(lower, min(upper, value))


def is_cod_available(
    policy: CodPolicy,
    order_value,
    pincode: str = "",
    state: str = "",
    city: str = "",
    items: Iterable[CodItem] = (),
    order_time=None,
) -> CodAvailability:
    """Decide whether COD may be offered; the first failing rule wins."""
    if not policy.enabled:
        return _unavailable(COD_DISABLED, "COD is disabled")

    order_value = Decimal(str(order_value))
    if order_value < policy.min_order_value:
        return _unavailable(
            BELOW_MIN_ORDER_VALUE,
            f"Order value ₹{_fmt(order_value)} is below minimum ₹{_fmt(policy.min_order_value)}",
        )
    if policy.max_order_value and order_value > policy.max_order_value:
        return _unavailable(
            ABOVE_MAX_ORDER_VALUE,
            f"Order value ₹{_fmt(order_value)} exceeds maximum ₹{_fmt(policy.max_order_value)}",
        )

    if pincode in policy.excluded_pincodes:
        return _unavailable(PINCODE_EXCLUDED, f"COD not available for pincode {pincode}")
    if state in policy.excluded_states:
        return _unavailable(STATE_EXCLUDED, f"COD not available for state {state}")

    window = policy.time_window
    if window.enabled:
        order_time = order_time or timezone.now()
        if timezone.is_naive(order_time):
            # Naive times are store-local wall clock
            order_time = timezone.make_aware(order_time)
        local = timezone.localtime(order_time)
        # Python weekday() is Monday=0; stored days use Sunday=0
        weekday = (local.weekday() + 1) % 7
        if window.days_of_week and weekday not in window.days_of_week:
            return _unavailable(DAY_NOT_ALLOWED, "COD not available on this day")
        current = local.strftime("%H:%M")
        if current < window.start_time or current > window.end_time:
            return _unavailable(TIME_NOT_ALLOWED, "COD not available at this time")

    for item in items:
        if item.product_id is not None and str(item.product_id) in policy.excluded_products:
            return _unavailable(PRODUCT_EXCLUDED, f"COD not available for product {item.name}")
        if item.category and item.category in policy.excluded_categories:
            return _unavailable(CATEGORY_EXCLUDED, f"COD not available for {item.category} products")

    return AVAILABLE


def _percentage_of(order_value, percentage):
    return order_value * percentage / Decimal(100)


def _charge(policy, order_value, pincode, state, city, courier_code):
    if policy.location_based_enabled:
        zone = next((z for z in policy.zones if z.matches(pincode, state, city)), None)
        if zone is not None:
            if (zone.type or policy.pricing_type) == "percentage":
                return clamp(_percentage_of(order_value, policy.percentage), zone.min_charge, zone.max_charge)
            return zone.charge

    if courier_code and policy.courier_charges_enabled:
        courier = next((c for c in policy.couriers if c.code == courier_code and c.enabled), None)
        if courier is not None:
            return clamp(_percentage_of(order_value, courier.percentage), courier.min_charge, courier.max_charge)

    if policy.pricing_type == "tiered":
        tier = next((t for t in policy.tiers if t.matches(order_value)), None)
        if tier is not None:
            return tier.charge

    if policy.pricing_type == "percentage":
        return clamp(_percentage_of(order_value, policy.percentage), policy.min_charge, policy.max_charge)

    # "dynamic" and unmatched tiers land here
    return policy.fixed_amount


def calculate_cod_charge(
    policy: CodPolicy,
    order_value,
    pincode: str = "",
    state: str = "",
    city: str = "",
    courier_code: Optional[str] = None,
) -> Decimal:
    """COD surcharge for an order.

    Priority: location zone, courier override, tier, percentage, fixed amount.
    A malformed policy never breaks checkout; the charge degrades to zero.
    """
    if not policy.enabled:
        return Decimal("0.00")
    try:
        charge = _charge(policy, Decimal(str(order_value)), pincode, state, city, courier_code)
        return Decimal(charge).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except Exception as e:
        logger.error(f"COD charge calculation failed for order value {order_value}: {str(e)}", exc_info=True)
        return Decimal("0.00")
