# cod/models.py
from decimal import Decimal

from django.db import models

from .policy import CodPolicy, CourierCharge, Tier, TimeWindow, Zone, as_decimal


class PaymentSettings(models.Model):
    """Store-wide payment configuration; a single row, created on first read"""

    PRICING_TYPE_CHOICES = [
        ("fixed", "Fixed"),
        ("percentage", "Percentage"),
        ("tiered", "Tiered"),
        ("dynamic", "Dynamic"),
    ]

    # COD availability and pricing
    cod_enabled = models.BooleanField(default=True)
    pricing_type = models.CharField(max_length=12, choices=PRICING_TYPE_CHOICES, default="fixed")
    fixed_amount = models.DecimalField(max_digits=10, decimal_places=2, default=50)
    percentage = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("2.5"))
    min_charge = models.DecimalField(max_digits=10, decimal_places=2, default=30)
    max_charge = models.DecimalField(max_digits=10, decimal_places=2, default=200)
    tiers = models.JSONField(default=list, blank=True)

    location_based_enabled = models.BooleanField(default=False)
    zones = models.JSONField(default=list, blank=True)

    courier_charges_enabled = models.BooleanField(default=False)
    couriers = models.JSONField(default=list, blank=True)

    # COD business rules
    min_order_value = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    max_order_value = models.DecimalField(max_digits=10, decimal_places=2, default=10000, blank=True, null=True)
    excluded_products = models.JSONField(default=list, blank=True)
    excluded_categories = models.JSONField(default=list, blank=True)
    excluded_pincodes = models.JSONField(default=list, blank=True)
    excluded_states = models.JSONField(default=list, blank=True)
    time_restrictions_enabled = models.BooleanField(default=False)
    start_time = models.CharField(max_length=5, default="09:00")
    end_time = models.CharField(max_length=5, default="18:00")
    days_of_week = models.JSONField(default=list, blank=True)

    # COD analytics
    total_cod_orders = models.PositiveIntegerField(default=0)
    total_cod_revenue = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    average_cod_charge = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    analytics_updated_at = models.DateTimeField(blank=True, null=True)

    online_payment_enabled = models.BooleanField(default=True)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Payment settings"
        verbose_name_plural = "Payment settings"

    def to_policy(self):
        return CodPolicy(
            enabled=self.cod_enabled,
            pricing_type=self.pricing_type,
            fixed_amount=as_decimal(self.fixed_amount),
            percentage=as_decimal(self.percentage),
            min_charge=as_decimal(self.min_charge),
            max_charge=as_decimal(self.max_charge),
            tiers=tuple(Tier.from_dict(t) for t in self.tiers or ()),
            location_based_enabled=self.location_based_enabled,
            zones=tuple(Zone.from_dict(z) for z in self.zones or ()),
            courier_charges_enabled=self.courier_charges_enabled,
            couriers=tuple(CourierCharge.from_dict(c) for c in self.couriers or ()),
            min_order_value=as_decimal(self.min_order_value),
            max_order_value=as_decimal(self.max_order_value) if self.max_order_value is not None else None,
            excluded_products=frozenset(str(p) for p in self.excluded_products or ()),
            excluded_categories=frozenset(self.excluded_categories or ()),
            excluded_pincodes=frozenset(str(p) for p in self.excluded_pincodes or ()),
            excluded_states=frozenset(self.excluded_states or ()),
            time_window=TimeWindow(
                enabled=self.time_restrictions_enabled,
                start_time=self.start_time,
                end_time=self.end_time,
                days_of_week=tuple(int(d) for d in self.days_of_week or ()),
            ),
        )

    def analytics_dict(self):
        return {
            "totalCodOrders": self.total_cod_orders,
            "totalCodRevenue": float(self.total_cod_revenue),
            "averageCodCharge": float(self.average_cod_charge),
            "lastUpdated": self.analytics_updated_at.isoformat() if self.analytics_updated_at else None,
        }

    def cod_dict(self):
        return {
            "enabled": self.cod_enabled,
            "pricing": {
                "type": self.pricing_type,
                "fixedAmount": float(self.fixed_amount),
                "percentage": float(self.percentage),
                "minCharge": float(self.min_charge),
                "maxCharge": float(self.max_charge),
                "tiers": self.tiers,
                "locationBased": {"enabled": self.location_based_enabled, "zones": self.zones},
            },
            "courierCharges": {"enabled": self.courier_charges_enabled, "couriers": self.couriers},
            "rules": {
                "minOrderValue": float(self.min_order_value),
                "maxOrderValue": float(self.max_order_value) if self.max_order_value is not None else None,
                "excludedProducts": self.excluded_products,
                "excludedCategories": self.excluded_categories,
                "excludedPincodes": self.excluded_pincodes,
                "excludedStates": self.excluded_states,
                "timeRestrictions": {
                    "enabled": self.time_restrictions_enabled,
                    "startTime": self.start_time,
                    "endTime": self.end_time,
                    "daysOfWeek": self.days_of_week,
                },
            },
            "analytics": self.analytics_dict(),
        }

    def __str__(self):
        return f"Payment settings (COD {'on' if self.cod_enabled else 'off'}, online {'on' if self.online_payment_enabled else 'off'})"
