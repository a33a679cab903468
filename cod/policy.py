"""Immutable COD policy values.

The calculator only ever sees these; ``PaymentSettings.to_policy()`` builds
them from the stored configuration.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple


def as_decimal(value, default="0"):
    if value is None or value == "":
        return Decimal(default)
    return Decimal(str(value))


@dataclass(frozen=True)
class Tier:
    min_amount: Decimal
    max_amount: Optional[Decimal]
    charge: Decimal

    def matches(self, order_value):
        # A zero or missing upper bound is open-ended
        return order_value >= self.min_amount and (not self.max_amount or order_value <= self.max_amount)

    @classmethod
    def from_dict(cls, data):
        max_amount = data.get("maxAmount")
        return cls(
            min_amount=as_decimal(data.get("minAmount")),
            max_amount=as_decimal(max_amount) if max_amount not in (None, "") else None,
            charge=as_decimal(data.get("charge")),
        )


@dataclass(frozen=True)
class Zone:
    name: str
    charge: Decimal
    pincodes: Tuple[str, ...] = ()
    states: Tuple[str, ...] = ()
    cities: Tuple[str, ...] = ()
    min_charge: Decimal = Decimal("30")
    max_charge: Decimal = Decimal("200")
    type: str = ""

    def matches(self, pincode, state, city):
        return pincode in self.pincodes or state in self.states or city in self.cities

    @classmethod
    def from_dict(cls, data):
        return cls(
            name=data.get("name", ""),
            charge=as_decimal(data.get("charge")),
            pincodes=tuple(str(p) for p in data.get("pincodes") or ()),
            states=tuple(data.get("states") or ()),
            cities=tuple(data.get("cities") or ()),
            min_charge=as_decimal(data.get("minCharge"), "30"),
            max_charge=as_decimal(data.get("maxCharge"), "200"),
            type=data.get("type") or "",
        )


@dataclass(frozen=True)
class CourierCharge:
    name: str
    code: str
    percentage: Decimal = Decimal("2.5")
    min_charge: Decimal = Decimal("30")
    max_charge: Decimal = Decimal("200")
    enabled: bool = True

    @classmethod
    def from_dict(cls, data):
        return cls(
            name=data.get("name", ""),
            code=str(data.get("code", "")),
            percentage=as_decimal(data.get("percentage"), "2.5"),
            min_charge=as_decimal(data.get("minCharge"), "30"),
            max_charge=as_decimal(data.get("maxCharge"), "200"),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(frozen=True)
class TimeWindow:
    enabled: bool = False
    start_time: str = "09:00"
    end_time: str = "18:00"
    # 0 = Sunday; empty means every day
    days_of_week: Tuple[int, ...] = ()


@dataclass(frozen=True)
class CodPolicy:
    enabled: bool = True
    pricing_type: str = "fixed"
    fixed_amount: Decimal = Decimal("50")
    percentage: Decimal = Decimal("2.5")
    min_charge: Decimal = Decimal("30")
    max_charge: Decimal = Decimal("200")
    tiers: Tuple[Tier, ...] = ()
    location_based_enabled: bool = False
    zones: Tuple[Zone, ...] = ()
    courier_charges_enabled: bool = False
    couriers: Tuple[CourierCharge, ...] = ()
    min_order_value: Decimal = Decimal("0")
    max_order_value: Optional[Decimal] = Decimal("10000")
    excluded_products: frozenset = field(default_factory=frozenset)
    excluded_categories: frozenset = field(default_factory=frozenset)
    excluded_pincodes: frozenset = field(default_factory=frozenset)
    excluded_states: frozenset = field(default_factory=frozenset)
    time_window: TimeWindow = TimeWindow()
