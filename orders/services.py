"""Checkout: cart in, persisted order out."""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from django.db import transaction
from django.utils import timezone

from catalog.inventory import StockLine, decrement_stock
from catalog.models import Product, is_absolute_url
from cod.calculator import CodItem, calculate_cod_charge, is_cod_available
from cod.repository import PaymentSettingsRepository
from promotions.evaluator import evaluate_promotion, redeem_promotion, to_money
from storefront.exceptions import Forbidden, RuleViolation, ValidationFailed

from .models import Order, OrderItem
from .notifications import queue_order_placed

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cod", "online")

# Address payload key -> required?
ADDRESS_FIELDS = {
    "name": True,
    "phone": True,
    "addressLine1": True,
    "addressLine2": False,
    "city": True,
    "state": True,
    "postalCode": True,
    "country": False,
}


@dataclass
class CartLine:
    product: Optional[Product]
    product_id: Optional[int]
    name: str
    price: Decimal
    quantity: int
    color: str = ""
    size: str = ""
    sku: str = ""
    image: str = ""

    @property
    def line_total(self):
        return self.price * self.quantity

    def resolved_image(self):
        if is_absolute_url(self.image):
            return self.image
        if self.product is not None:
            return self.product.image_for(self.color) or self.image
        return self.image


@dataclass
class CodQuote:
    available: bool
    subtotal: Decimal
    cod_charge: Decimal = Decimal("0.00")
    reason: Optional[str] = None
    code: Optional[str] = None

    @property
    def total(self):
        return self.subtotal + self.cod_charge

    def to_dict(self):
        if not self.available:
            return {"available": False, "reason": self.reason, "code": self.code}
        return {
            "available": True,
            "codCharge": float(self.cod_charge),
            "totalAmount": float(self.total),
            "breakdown": {
                "subTotal": float(self.subtotal),
                "codCharge": float(self.cod_charge),
                "total": float(self.total),
            },
        }


def _product_pk(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _quantity(value, position):
    if isinstance(value, bool):
        raise ValidationFailed(f"Item {position}: quantity must be a positive whole number")
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"Item {position}: quantity must be a positive whole number")
    if quantity != value and str(quantity) != str(value).strip():
        raise ValidationFailed(f"Item {position}: quantity must be a positive whole number")
    if quantity < 1:
        raise ValidationFailed(f"Item {position}: quantity must be a positive whole number")
    return quantity


def _price(value, position):
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"Item {position}: price is invalid")
    if not price.is_finite() or price < 0:
        raise ValidationFailed(f"Item {position}: price is invalid")
    return to_money(price)


class OrderService:
    """Turns a cart into an order.

    The payment settings repository is injected so the COD policy comes from
    one place and tests can hand in their own.
    """

    def __init__(self, settings_repository=None):
        self.settings_repository = settings_repository or PaymentSettingsRepository()

    # ---- input validation ----

    def resolve_cart(self, cart_items) -> List[CartLine]:
        """Validate cart lines; catalog prices win over client prices"""
        if not isinstance(cart_items, list) or not cart_items:
            raise ValidationFailed("No items in cart")

        product_ids = {
            _product_pk(item.get("id")) for item in cart_items if isinstance(item, dict)
        } - {None}
        products = Product.objects.prefetch_related("images").in_bulk(product_ids)

        lines = []
        for position, item in enumerate(cart_items, start=1):
            if not isinstance(item, dict):
                raise ValidationFailed(f"Item {position} is not an object")
            quantity = _quantity(item.get("quantity"), position)
            product_id = _product_pk(item.get("id"))
            product = products.get(product_id)

            if product is not None:
                price = to_money(product.selling_price)
                name = item.get("name") or product.name
            else:
                if item.get("price") is None:
                    raise ValidationFailed(f"Item {position}: price is required")
                price = _price(item.get("price"), position)
                name = item.get("name") or ""
                if not name:
                    raise ValidationFailed(f"Item {position}: name is required")

            lines.append(CartLine(
                product=product,
                product_id=product.pk if product is not None else None,
                name=str(name)[:255],
                price=price,
                quantity=quantity,
                color=str(item.get("color") or "").strip(),
                size=str(item.get("size") or "").strip(),
                sku=str(item.get("sku") or ""),
                image=str(item.get("image") or ""),
            ))
        return lines

    def clean_address(self, address):
        if not isinstance(address, dict):
            raise ValidationFailed("Shipping address is required")
        cleaned = {}
        for key, required in ADDRESS_FIELDS.items():
            value = str(address.get(key) or "").strip()
            if required and not value:
                raise ValidationFailed(f"address.{key} is required")
            cleaned[key] = value
        cleaned["country"] = cleaned["country"] or "India"
        cleaned["email"] = str(address.get("email") or "").strip()
        return cleaned

    @staticmethod
    def subtotal_of(lines):
        return to_money(sum((line.line_total for line in lines), Decimal("0")))

    @staticmethod
    def _cod_items(lines):
        return [
            CodItem(
                product_id=str(line.product_id) if line.product_id is not None else None,
                name=line.name,
                category=line.product.category if line.product is not None else "",
            )
            for line in lines
        ]

    # ---- COD ----

    def check_cod(self, cart_items, address, now=None) -> CodQuote:
        lines = self.resolve_cart(cart_items)
        address = address if isinstance(address, dict) else {}
        subtotal = self.subtotal_of(lines)
        pincode = str(address.get("postalCode") or "").strip()
        state = str(address.get("state") or "").strip()
        city = str(address.get("city") or "").strip()

        policy = self.settings_repository.load_policy()
        availability = is_cod_available(
            policy, subtotal, pincode, state, city, items=self._cod_items(lines), order_time=now,
        )
        if not availability.available:
            return CodQuote(False, subtotal, reason=availability.reason, code=availability.code)

        charge = calculate_cod_charge(policy, subtotal, pincode, state, city)
        return CodQuote(True, subtotal, cod_charge=charge)

    # ---- checkout ----

    def create_order(self, user, cart_items, address, payment_method, payment_result=None, promo_code=None, now=None):
        """Validate, price and persist an order.

        The order row, its items, the promotion redemption and the stock
        decrement commit together. Notifications are queued for after commit.
        """
        now = now or timezone.now()
        lines = self.resolve_cart(cart_items)
        address = self.clean_address(address)
        if payment_method not in PAYMENT_METHODS:
            raise ValidationFailed("paymentMethod must be 'cod' or 'online'")

        email = address["email"] or (getattr(user, "email", "") or "")
        if not email:
            raise ValidationFailed("An email address is required for order updates")

        subtotal = self.subtotal_of(lines)

        promotion = None
        discount = Decimal("0.00")
        discount_code = None
        if promo_code:
            result = evaluate_promotion(promo_code, subtotal, now=now)
            if result.valid:
                promotion = result.promotion
                discount = result.discount_amount
                discount_code = result.code
            else:
                logger.info(f"Promo code {promo_code!r} ignored at checkout: {result.reason}")

        cod_charge = Decimal("0.00")
        if payment_method == "cod":
            policy = self.settings_repository.load_policy()
            availability = is_cod_available(
                policy, subtotal, address["postalCode"], address["state"], address["city"],
                items=self._cod_items(lines), order_time=now,
            )
            if not availability.available:
                raise RuleViolation(availability.reason, code=availability.code)
            cod_charge = calculate_cod_charge(
                policy, subtotal, address["postalCode"], address["state"], address["city"],
            )
        elif not self.settings_repository.online_payment_enabled():
            raise Forbidden("Online payment is currently disabled by admin.", code="online_payment_disabled")

        payment_result = payment_result if isinstance(payment_result, dict) else {}

        with transaction.atomic():
            order = Order(
                user=user if getattr(user, "is_authenticated", False) else None,
                email=email,
                full_name=address["name"],
                phone_number=address["phone"],
                address_line1=address["addressLine1"],
                address_line2=address["addressLine2"],
                city=address["city"],
                state=address["state"],
                pin_code=address["postalCode"],
                country=address["country"],
                subtotal=subtotal,
                discount=discount,
                cod_charge=cod_charge,
                discount_code=discount_code,
                payment_method=payment_method,
                payment_id=payment_result.get("id") or None,
                payment_status=payment_result.get("status") or "pending",
            )
            order.recompute_total()
            order.save()

            OrderItem.objects.bulk_create([
                OrderItem(
                    order=order,
                    product=line.product,
                    name=line.name,
                    price=line.price,
                    quantity=line.quantity,
                    color=line.color,
                    size=line.size,
                    sku=line.sku,
                    image_url=line.resolved_image()[:500],
                )
                for line in lines
            ])

            if promotion is not None and not redeem_promotion(promotion):
                # Lost the race for the last use
                order.discount = Decimal("0.00")
                order.discount_code = None
                order.recompute_total()
                order.save(update_fields=["discount", "discount_code", "total", "updated_at"])

            decrement_stock([
                StockLine(line.product_id, line.color, line.size, line.quantity, name=line.name)
                for line in lines
            ])

            queue_order_placed(order, self.settings_repository)

        logger.info(f"Order {order.order_id} created ({payment_method}, total ₹{order.total})")
        return order
