# orders/models.py
import secrets
from datetime import timezone as dt_timezone
from enum import Enum

from django.conf import settings
from django.db import models
from django.utils import timezone

from catalog.models import is_absolute_url
from storefront.exceptions import NotFound, RuleViolation


def generate_order_id(now=None):
    """ORD-<UTC timestamp to the millisecond>-<6 random hex>"""
    now = (now or timezone.now()).astimezone(dt_timezone.utc)
    return f"ORD-{now:%Y%m%d%H%M%S}{now.microsecond // 1000:03d}-{secrets.token_hex(3).upper()}"


class LookupKey(str, Enum):
    ORDER_ID = "order_id"
    CARRIER_ORDER_ID = "shiprocket_order_id"


class OrderQuerySet(models.QuerySet):
    def resolve(self, identifier, key=LookupKey.ORDER_ID):
        """Find an order by ``key``, falling back to the primary key.

        Callers outside the store (the carrier in particular) hand back either
        identifier, so both must resolve.
        """
        identifier = str(identifier or "").strip()
        order = self.filter(**{key.value: identifier}).first() if identifier else None
        if order is None and identifier.isdigit():
            order = self.filter(pk=int(identifier)).first()
        if order is None:
            raise NotFound(f"Order not found: {identifier}")
        return order


class Order(models.Model):
    STATUS_PENDING = "pending"
    STATUS_CONFIRMED = "confirmed"
    STATUS_SHIPPED = "shipped"
    STATUS_DELIVERED = "delivered"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_SHIPPED, "Shipped"),
        (STATUS_DELIVERED, "Delivered"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    # Same-state moves are no-ops and never consult this table
    TRANSITIONS = {
        STATUS_PENDING: {STATUS_CONFIRMED, STATUS_SHIPPED, STATUS_DELIVERED, STATUS_CANCELLED},
        STATUS_CONFIRMED: {STATUS_SHIPPED, STATUS_DELIVERED, STATUS_CANCELLED},
        STATUS_SHIPPED: {STATUS_DELIVERED, STATUS_CANCELLED},
        STATUS_DELIVERED: set(),
        STATUS_CANCELLED: set(),
    }

    # Order or shipping states after which the customer can no longer cancel
    SHIPPED_STATES = {"shipped", "in_transit", "out_for_delivery", "delivered"}

    PAYMENT_METHOD_CHOICES = [
        ("cod", "Cash on Delivery"),
        ("online", "Online"),
    ]

    REPLACEMENT_STATUS_CHOICES = [
        ("pending", "Pending"),
        ("approved", "Approved"),
        ("rejected", "Rejected"),
        ("completed", "Completed"),
    ]

    order_id = models.CharField(max_length=40, unique=True, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="orders", on_delete=models.SET_NULL, blank=True, null=True
    )

    # Contact & Shipping
    email = models.EmailField()
    full_name = models.CharField(max_length=200)
    phone_number = models.CharField(max_length=20)
    address_line1 = models.CharField(max_length=255)
    address_line2 = models.CharField(max_length=255, blank=True, default="")
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=100)
    pin_code = models.CharField(max_length=10)
    country = models.CharField(max_length=100, default="India")

    # Pricing
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    cod_charge = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    discount_code = models.CharField(max_length=50, blank=True, null=True)

    # Payment
    payment_method = models.CharField(max_length=10, choices=PAYMENT_METHOD_CHOICES, default="cod")
    payment_id = models.CharField(max_length=100, blank=True, null=True, db_index=True)
    payment_status = models.CharField(max_length=30, default="pending")

    # Status
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)

    # Shiprocket Integration
    shiprocket_order_id = models.CharField(max_length=100, blank=True, null=True, unique=True)
    shipment_id = models.CharField(max_length=100, blank=True, default="")
    awb_code = models.CharField(max_length=100, blank=True, default="", db_index=True)
    courier_name = models.CharField(max_length=200, blank=True, default="")
    courier_id = models.CharField(max_length=50, blank=True, default="")
    shipping_status = models.CharField(max_length=50, blank=True, default="", db_index=True)
    expected_delivery_date = models.DateTimeField(blank=True, null=True)
    pickup_scheduled_date = models.DateTimeField(blank=True, null=True)
    delivered_at = models.DateTimeField(blank=True, null=True)
    label_url = models.URLField(max_length=500, blank=True, default="")
    manifest_url = models.URLField(max_length=500, blank=True, default="")
    invoice_url = models.URLField(max_length=500, blank=True, default="")
    pickup_data = models.JSONField(default=dict, blank=True)
    tracking_data = models.JSONField(default=dict, blank=True)

    # Cancellation
    cancellation_requested = models.BooleanField(default=False, db_index=True)
    cancellation_requested_at = models.DateTimeField(blank=True, null=True)
    cancellation_reason = models.TextField(blank=True, default="")
    admin_cancellation_reason = models.TextField(blank=True, default="")
    cancelled_at = models.DateTimeField(blank=True, null=True)

    # Replacement
    replacement_requested = models.BooleanField(default=False, db_index=True)
    replacement_status = models.CharField(max_length=10, choices=REPLACEMENT_STATUS_CHOICES, blank=True, default="")
    replacement_reason = models.TextField(blank=True, default="")
    replacement_admin_notes = models.TextField(blank=True, default="")
    replacement_requested_at = models.DateTimeField(blank=True, null=True)
    replacement_approved_at = models.DateTimeField(blank=True, null=True)
    replacement_rejected_at = models.DateTimeField(blank=True, null=True)
    replacement_rejection_reason = models.TextField(blank=True, default="")
    replacement_completed_at = models.DateTimeField(blank=True, null=True)
    replacement_shipment_id = models.CharField(max_length=100, blank=True, default="")
    replacement_courier = models.CharField(max_length=100, blank=True, default="")
    replacement_shiprocket_order_id = models.CharField(max_length=100, blank=True, default="")

    customer_notified = models.BooleanField(default=False)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OrderQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="order_status_created_idx"),
            models.Index(fields=["user", "created_at"], name="order_user_created_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self.order_id:
            self.order_id = generate_order_id()
        super().save(*args, **kwargs)

    # ---- money ----

    def recompute_total(self):
        self.total = self.subtotal - self.discount + self.cod_charge
        return self.total

    # ---- lifecycle ----

    def can_transition_to(self, new_status):
        return new_status == self.status or new_status in self.TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status):
        """Move to ``new_status``; returns False for a same-state no-op"""
        if new_status == self.status:
            return False
        if not self.can_transition_to(new_status):
            raise RuleViolation(
                f"Order {self.order_id} cannot move from {self.status} to {new_status}",
                code="invalid_transition",
            )
        self.status = new_status
        return True

    @property
    def is_terminal(self):
        return not self.TRANSITIONS.get(self.status)

    @property
    def has_shipped(self):
        return (
            (self.status or "").lower() in self.SHIPPED_STATES
            or (self.shipping_status or "").lower() in self.SHIPPED_STATES
        )

    def is_visible_to(self, user):
        return user.is_staff or (self.user_id is not None and self.user_id == user.pk)

    # ---- serialization ----

    def address_dict(self):
        return {
            "name": self.full_name,
            "phone": self.phone_number,
            "addressLine1": self.address_line1,
            "addressLine2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "postalCode": self.pin_code,
            "country": self.country,
        }

    def shipping_dict(self):
        return {
            "shipmentId": self.shipment_id,
            "shiprocketOrderId": self.shiprocket_order_id,
            "awbCode": self.awb_code,
            "courier": self.courier_name,
            "courierId": self.courier_id,
            "status": self.shipping_status,
            "expectedDeliveryDate": _iso(self.expected_delivery_date),
            "pickupScheduledDate": _iso(self.pickup_scheduled_date),
            "deliveredAt": _iso(self.delivered_at),
            "labelUrl": self.label_url,
            "manifestUrl": self.manifest_url,
            "invoiceUrl": self.invoice_url,
        }

    def replacement_dict(self):
        return {
            "orderId": self.order_id,
            "replacementRequested": self.replacement_requested,
            "replacementStatus": self.replacement_status,
            "replacementReason": self.replacement_reason,
            "replacementAdminNotes": self.replacement_admin_notes,
            "replacementRequestedAt": _iso(self.replacement_requested_at),
            "replacementApprovedAt": _iso(self.replacement_approved_at),
            "replacementRejectedAt": _iso(self.replacement_rejected_at),
            "replacementRejectionReason": self.replacement_rejection_reason,
            "replacementCompletedAt": _iso(self.replacement_completed_at),
            "replacementShipmentId": self.replacement_shipment_id,
            "replacementCourier": self.replacement_courier,
            "replacementShiprocketOrderId": self.replacement_shiprocket_order_id,
        }

    def to_dict(self, items=None):
        items = list(self.items.select_related("product").all()) if items is None else items
        return {
            "id": self.pk,
            "orderId": self.order_id,
            "email": self.email,
            "items": [item.to_dict() for item in items],
            "address": self.address_dict(),
            "subTotal": float(self.subtotal),
            "discount": float(self.discount),
            "discountCode": self.discount_code,
            "codCharge": float(self.cod_charge),
            "total": float(self.total),
            "payment": {
                "method": self.payment_method,
                "paymentId": self.payment_id,
                "status": self.payment_status,
            },
            "status": self.status,
            "shipping": self.shipping_dict(),
            "cancellationRequested": self.cancellation_requested,
            "cancellationRequestedAt": _iso(self.cancellation_requested_at),
            "cancellationReason": self.cancellation_reason,
            "adminCancellationReason": self.admin_cancellation_reason,
            "cancelledAt": _iso(self.cancelled_at),
            "replacement": self.replacement_dict(),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __str__(self):
        return f"Order {self.order_id} - {self.full_name}"


class OrderItem(models.Model):
    order = models.ForeignKey(Order, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey(
        "catalog.Product", related_name="order_items", on_delete=models.SET_NULL, blank=True, null=True
    )
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    quantity = models.PositiveIntegerField(default=1)
    color = models.CharField(max_length=50, blank=True, default="")
    size = models.CharField(max_length=20, blank=True, default="")
    sku = models.CharField(max_length=100, blank=True, default="")
    image_url = models.CharField(max_length=500, blank=True, default="")

    class Meta:
        ordering = ["id"]

    @property
    def line_total(self):
        return self.price * self.quantity

    @property
    def display_image(self):
        """Color image, then primary image, then the stored URL if it is absolute"""
        if self.product_id and self.product is not None:
            image = self.product.image_for(self.color)
            if image:
                return image
        return self.image_url if is_absolute_url(self.image_url) else ""

    def to_dict(self):
        return {
            "id": self.product_id,
            "name": self.name,
            "price": float(self.price),
            "quantity": self.quantity,
            "color": self.color,
            "size": self.size,
            "sku": self.sku,
            "image": self.display_image,
        }

    def __str__(self):
        return f"{self.name} x {self.quantity}"


def _iso(value):
    return value.isoformat() if value else None
