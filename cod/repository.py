"""Access to the payment settings row.

Services receive a ``PaymentSettingsRepository`` instead of reading a global,
so tests can hand them a repository over whatever settings they need.
"""
import logging
import re
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from storefront.exceptions import ValidationFailed

from .models import PaymentSettings

logger = logging.getLogger(__name__)

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _number(value, field, allow_none=False):
    if value is None and allow_none:
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"{field} must be a number")
    if not number.is_finite() or number < 0:
        raise ValidationFailed(f"{field} must be a non-negative number")
    return number


def _string_list(value, field):
    if not isinstance(value, list):
        raise ValidationFailed(f"{field} must be a list")
    return [str(v).strip() for v in value if str(v).strip()]


def _object_list(value, field, required):
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise ValidationFailed(f"{field} must be a list of objects")
    for entry in value:
        missing = [key for key in required if entry.get(key) in (None, "")]
        if missing:
            raise ValidationFailed(f"{field} entries require: {', '.join(missing)}")
    return value


class PaymentSettingsRepository:
    def get_or_create_default(self):
        settings_row = PaymentSettings.objects.order_by("pk").first()
        if settings_row is None:
            settings_row = PaymentSettings.objects.create()
            logger.info("Created default payment settings")
        return settings_row

    def load_policy(self):
        return self.get_or_create_default().to_policy()

    def online_payment_enabled(self):
        return self.get_or_create_default().online_payment_enabled

    def set_online_payment(self, enabled):
        settings_row = self.get_or_create_default()
        settings_row.online_payment_enabled = bool(enabled)
        settings_row.save(update_fields=["online_payment_enabled", "updated_at"])
        logger.info(f"Online payment {'enabled' if enabled else 'disabled'}")
        return settings_row

    @transaction.atomic
    def record_cod_order(self, cod_charge, order_total):
        """Fold one COD order into the running analytics"""
        settings_row = self.get_or_create_default()
        PaymentSettings.objects.filter(pk=settings_row.pk).update(
            total_cod_orders=F("total_cod_orders") + 1,
            total_cod_revenue=F("total_cod_revenue") + Decimal(str(order_total)),
            analytics_updated_at=timezone.now(),
        )
        settings_row = PaymentSettings.objects.select_for_update().get(pk=settings_row.pk)
        # Running mean of the charge itself
        previous = settings_row.total_cod_orders - 1
        average = (settings_row.average_cod_charge * previous + Decimal(str(cod_charge))) / settings_row.total_cod_orders
        settings_row.average_cod_charge = average.quantize(Decimal("0.01"))
        settings_row.save(update_fields=["average_cod_charge"])
        return settings_row

    def update_cod(self, cod):
        """Merge a partial COD configuration payload into the stored settings"""
        if not isinstance(cod, dict):
            raise ValidationFailed("cod must be an object")

        settings_row = self.get_or_create_default()

        if "enabled" in cod:
            settings_row.cod_enabled = bool(cod["enabled"])

        pricing = cod.get("pricing") or {}
        if "type" in pricing:
            if pricing["type"] not in dict(PaymentSettings.PRICING_TYPE_CHOICES):
                raise ValidationFailed("pricing.type must be one of: fixed, percentage, tiered, dynamic")
            settings_row.pricing_type = pricing["type"]
        for key, attr in (("fixedAmount", "fixed_amount"), ("percentage", "percentage"),
                          ("minCharge", "min_charge"), ("maxCharge", "max_charge")):
            if key in pricing:
                setattr(settings_row, attr, _number(pricing[key], f"pricing.{key}"))
        if "tiers" in pricing:
            settings_row.tiers = _object_list(pricing["tiers"], "pricing.tiers", ("minAmount", "charge"))
        location = pricing.get("locationBased") or {}
        if "enabled" in location:
            settings_row.location_based_enabled = bool(location["enabled"])
        if "zones" in location:
            settings_row.zones = _object_list(location["zones"], "pricing.locationBased.zones", ("name", "charge"))

        courier_charges = cod.get("courierCharges") or {}
        if "enabled" in courier_charges:
            settings_row.courier_charges_enabled = bool(courier_charges["enabled"])
        if "couriers" in courier_charges:
            settings_row.couriers = _object_list(courier_charges["couriers"], "courierCharges.couriers", ("name", "code"))

        rules = cod.get("rules") or {}
        if "minOrderValue" in rules:
            settings_row.min_order_value = _number(rules["minOrderValue"], "rules.minOrderValue")
        if "maxOrderValue" in rules:
            settings_row.max_order_value = _number(rules["maxOrderValue"], "rules.maxOrderValue", allow_none=True)
        for key, attr in (("excludedProducts", "excluded_products"), ("excludedCategories", "excluded_categories"),
                          ("excludedPincodes", "excluded_pincodes"), ("excludedStates", "excluded_states")):
            if key in rules:
                setattr(settings_row, attr, _string_list(rules[key], f"rules.{key}"))

        window = rules.get("timeRestrictions") or {}
        if "enabled" in window:
            settings_row.time_restrictions_enabled = bool(window["enabled"])
        for key, attr in (("startTime", "start_time"), ("endTime", "end_time")):
            if key in window:
                if not TIME_RE.match(str(window[key])):
                    raise ValidationFailed(f"rules.timeRestrictions.{key} must be HH:MM")
                setattr(settings_row, attr, window[key])
        if "daysOfWeek" in window:
            days = window["daysOfWeek"]
            if not isinstance(days, list) or any(isinstance(d, bool) or d not in range(7) for d in days):
                raise ValidationFailed("rules.timeRestrictions.daysOfWeek must list days 0-6 (0 = Sunday)")
            settings_row.days_of_week = sorted(set(days))

        if settings_row.min_charge > settings_row.max_charge:
            raise ValidationFailed("pricing.minCharge cannot exceed pricing.maxCharge")

        settings_row.save()
        logger.info("COD settings updated")
        return settings_row
