"""Order state changes driven by admins, customers and the carrier.

Local state is the source of truth: a carrier or email failure after a local
change is logged and reported, never rolled back into the order.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from storefront.exceptions import CarrierError, RuleViolation, ValidationFailed

from .models import LookupKey, Order
from .notifications import (
    queue_cancellation_decision,
    queue_cancellation_request,
    queue_processing_email,
    queue_tracking_email,
)
from .shiprocket_utils import ShiprocketAPI

logger = logging.getLogger(__name__)

SHIPPING_PROCESSING = "Processing"
SHIPPING_FAILED = "Failed"
SHIPPING_AWB_ASSIGNED = "AWB Assigned"

REPLACEABLE_STATUSES = {Order.STATUS_DELIVERED, Order.STATUS_CONFIRMED}

# kind -> (adapter method, order field passed to it, order field the URL is stored in)
DOCUMENTS = {
    "pickup": ("generate_pickup", "shipment_id", None),
    "manifest": ("generate_manifest", "shipment_id", "manifest_url"),
    "manifest_print": ("print_manifest", "shiprocket_order_id", "manifest_url"),
    "label": ("generate_label", "shipment_id", "label_url"),
    "invoice": ("print_invoice", "shiprocket_order_id", "invoice_url"),
}


def parse_carrier_datetime(value):
    """Carrier timestamps arrive as ISO strings, 'YYYY-MM-DD HH:MM:SS' or bare dates"""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        parsed = parse_datetime(text)
        if parsed is None:
            day = parse_date(text)
            if day is None:
                logger.warning(f"Unparseable carrier date: {value!r}")
                return None
            parsed = datetime(day.year, day.month, day.day)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _status_name(payload):
    raw = payload.get("status") or payload.get("current_status") or ""
    if isinstance(raw, dict):
        raw = raw.get("name") or ""
    return str(raw).strip().lower().replace(" ", "_").replace("-", "_")


@dataclass
class ReplacementEligibility:
    eligible: bool
    reason: Optional[str] = None
    message: str = ""
    policy_days: Optional[int] = None
    policy: str = ""
    delivery_date: Optional[datetime] = None
    deadline: Optional[datetime] = None
    days_remaining: int = 0
    replacement_status: str = ""

    def to_dict(self):
        data = {"eligible": self.eligible}
        if self.reason:
            data["reason"] = self.reason
            data["message"] = self.message
        if self.replacement_status:
            data["replacementStatus"] = self.replacement_status
        if self.policy_days is not None:
            data["replacementPolicy"] = {"days": self.policy_days, "description": self.policy}
        if self.deadline is not None:
            data["deliveryDate"] = self.delivery_date.isoformat()
            data["replacementDeadline"] = self.deadline.isoformat()
            data["daysRemaining"] = self.days_remaining
        return data


class OrderLifecycle:
    def __init__(self, api_factory=ShiprocketAPI):
        self.api_factory = api_factory
        self._api = None

    @property
    def api(self):
        if self._api is None:
            self._api = self.api_factory()
        return self._api

    # ---- shipment ----

    @staticmethod
    def _check_shippable(order):
        if order.shiprocket_order_id:
            raise RuleViolation("Order has already been added to Shiprocket", code="shipment_exists")
        if not order.can_transition_to(Order.STATUS_CONFIRMED):
            raise RuleViolation(
                f"Order {order.order_id} is {order.status} and cannot be shipped", code="invalid_transition"
            )

    def create_shipment(self, order):
        """Register ``order`` with the carrier and mark it confirmed.

        The row stays locked for the carrier calls, so a second request for the
        same order waits and then sees ``shipment_exists``.
        """
        self._check_shippable(order)

        failure = None
        with transaction.atomic():
            locked = Order.objects.select_for_update().get(pk=order.pk)
            self._check_shippable(locked)

            success, couriers = self.api.check_serviceability(locked.pin_code, cod=locked.payment_method == "cod")
            if success:
                success, result = self.api.create_order(locked)
                if not success:
                    failure = result
            else:
                failure = couriers

            if failure is not None:
                # Recorded even though the request fails
                locked.shipping_status = SHIPPING_FAILED
                locked.save(update_fields=["shipping_status", "updated_at"])
            else:
                proposed = couriers[0] if couriers else {}
                locked.shiprocket_order_id = result["order_id"]
                locked.shipment_id = result["shipment_id"]
                locked.courier_name = result.get("courier_name") or proposed.get("courier_name") or ""
                locked.courier_id = str(proposed.get("courier_company_id") or "")
                locked.transition_to(Order.STATUS_CONFIRMED)
                locked.shipping_status = SHIPPING_PROCESSING
                locked.save()
                queue_processing_email(locked)

        order.refresh_from_db()
        if failure is not None:
            logger.error(f"Shipment creation failed for {order.order_id}: {failure}")
            raise CarrierError(f"Failed to create Shiprocket order: {failure}")

        logger.info(f"Shipment {order.shipment_id} created for {order.order_id}")
        return order

    def assign_awb(self, order, courier_id=None):
        if not order.shipment_id:
            raise RuleViolation("Shipment has not been created for this order", code="shipment_missing")
        if order.awb_code:
            raise RuleViolation("AWB already assigned for this order", code="awb_already_assigned")

        success, result = self.api.assign_awb(order.shipment_id, courier_id=courier_id)
        if not success:
            raise CarrierError(result)

        order.awb_code = result["awb_code"]
        order.courier_name = result["courier_name"] or order.courier_name
        order.courier_id = result["courier_id"] or order.courier_id
        order.shipping_status = SHIPPING_AWB_ASSIGNED
        order.save()
        queue_tracking_email(order)
        return order

    def generate_documents(self, order, kind):
        if kind not in DOCUMENTS:
            raise ValidationFailed(f"Unknown document type: {kind}")
        method_name, source_field, url_field = DOCUMENTS[kind]
        reference = getattr(order, source_field)
        if not reference:
            raise RuleViolation("Shipment has not been created for this order", code="shipment_missing")

        success, result = getattr(self.api, method_name)(reference)
        if not success:
            raise CarrierError(result)

        if url_field is None:
            order.pickup_data = result if isinstance(result, dict) else {"response": result}
            scheduled = parse_carrier_datetime(order.pickup_data.get("pickup_scheduled_date"))
            if scheduled:
                order.pickup_scheduled_date = scheduled
            order.save(update_fields=["pickup_data", "pickup_scheduled_date", "updated_at"])
        else:
            setattr(order, url_field, result)
            order.save(update_fields=[url_field, "updated_at"])
        return result

    def track(self, order):
        if not order.awb_code:
            raise RuleViolation("AWB not assigned", code="awb_missing")
        success, tracking = self.api.track_awb(order.awb_code)
        if not success:
            raise CarrierError(tracking)
        order.tracking_data = tracking
        order.save(update_fields=["tracking_data", "updated_at"])
        return tracking

    def courier_options(self, order):
        success, couriers = self.api.check_serviceability(order.pin_code, cod=order.payment_method == "cod")
        if not success:
            raise CarrierError(f"Failed to get courier service options: {couriers}")
        return {
            "orderId": order.order_id,
            "pickupPincode": self.api.pickup_pincode,
            "deliveryPincode": order.pin_code,
            "courierOptions": couriers,
        }

    # ---- carrier webhook ----

    def handle_carrier_webhook(self, payload):
        """Apply a courier assignment / status push from the carrier.

        Every field is an overwrite, so re-delivery of the same payload leaves
        the order unchanged. The shipment email goes out only the first time an
        AWB is recorded.
        """
        if not isinstance(payload, dict):
            raise ValidationFailed("Missing required fields")
        carrier_order_id = str(payload.get("order_id") or "").strip()
        awb_code = str(payload.get("awb_code") or "").strip()
        if not carrier_order_id or not awb_code:
            raise ValidationFailed("Missing required fields")

        found = Order.objects.resolve(carrier_order_id, key=LookupKey.CARRIER_ORDER_ID)
        status_name = _status_name(payload)

        with transaction.atomic():
            order = Order.objects.select_for_update().get(pk=found.pk)
            awb_changed = order.awb_code != awb_code

            order.awb_code = awb_code
            if "courier_name" in payload:
                order.courier_name = str(payload.get("courier_name") or "")
            if "courier_id" in payload:
                order.courier_id = str(payload.get("courier_id") or "")
            expected = parse_carrier_datetime(payload.get("expected_delivery_date"))
            if expected:
                order.expected_delivery_date = expected
            pickup = parse_carrier_datetime(payload.get("pickup_scheduled_date"))
            if pickup:
                order.pickup_scheduled_date = pickup

            if status_name == Order.STATUS_DELIVERED:
                target, shipping_status = Order.STATUS_DELIVERED, Order.STATUS_DELIVERED
            elif status_name in ("in_transit", "out_for_delivery"):
                target, shipping_status = Order.STATUS_SHIPPED, status_name
            else:
                target, shipping_status = Order.STATUS_SHIPPED, Order.STATUS_SHIPPED

            if order.can_transition_to(target):
                order.transition_to(target)
                order.shipping_status = shipping_status
                if target == Order.STATUS_DELIVERED and not order.delivered_at:
                    order.delivered_at = parse_carrier_datetime(payload.get("delivered_date")) or timezone.now()
            else:
                logger.warning(
                    f"Carrier update {status_name or 'shipped'} ignored for {order.order_id} in state {order.status}"
                )

            order.tracking_data = payload
            order.save()

        logger.info(f"Order {order.order_id} updated with AWB: {awb_code}")
        if awb_changed and order.status != Order.STATUS_CANCELLED:
            queue_tracking_email(order)
        return order

    # ---- cancellation ----

    def request_cancellation(self, order, reason):
        reason = (reason or "").strip()
        if not reason:
            raise ValidationFailed("Cancellation reason is required")
        if order.status == Order.STATUS_CANCELLED:
            raise RuleViolation("Order is already cancelled", code="order_already_cancelled")
        if order.has_shipped:
            raise RuleViolation("Cannot cancel shipped orders", code="order_already_shipped")
        if order.awb_code:
            raise RuleViolation("Cannot cancel orders with AWB assigned", code="awb_assigned")
        if order.cancellation_requested:
            raise RuleViolation(
                "Cancellation already requested for this order", code="cancellation_already_requested"
            )

        now = timezone.now()
        updated = (
            Order.objects.filter(pk=order.pk, cancellation_requested=False)
            .exclude(status=Order.STATUS_CANCELLED)
            .update(
                cancellation_requested=True,
                cancellation_requested_at=now,
                cancellation_reason=reason,
                updated_at=now,
            )
        )
        if not updated:
            raise RuleViolation(
                "Cancellation already requested for this order", code="cancellation_already_requested"
            )

        order.refresh_from_db()
        logger.info(f"Cancellation requested for {order.order_id}")
        queue_cancellation_request(order)
        return order

    def decide_cancellation(self, order, approve, admin_reason=""):
        if order.status == Order.STATUS_CANCELLED:
            raise RuleViolation("Order is already cancelled", code="order_already_cancelled")
        if not order.cancellation_requested:
            raise RuleViolation("No cancellation request found for this order", code="no_cancellation_request")

        admin_reason = (admin_reason or "").strip()
        if approve:
            self._cancel(order, admin_reason or "Cancelled by admin")
        else:
            order.cancellation_requested = False
            order.cancellation_requested_at = None
            order.cancellation_reason = ""
            order.admin_cancellation_reason = admin_reason or "Cancellation request rejected"
            order.save()
            logger.info(f"Cancellation request rejected for {order.order_id}")

        queue_cancellation_decision(order, approved=approve)
        return order

    def admin_cancel(self, order, reason):
        reason = (reason or "").strip()
        if not reason:
            raise ValidationFailed("Cancellation reason is required")
        if order.status == Order.STATUS_CANCELLED:
            raise RuleViolation("Order is already cancelled", code="order_already_cancelled")
        self._cancel(order, reason)
        queue_cancellation_decision(order, approved=True, by_admin=True)
        return order

    def _cancel(self, order, reason):
        order.transition_to(Order.STATUS_CANCELLED)
        if order.shiprocket_order_id:
            success, message = self.api.cancel_orders([order.shiprocket_order_id])
            if not success:
                # Local cancellation stands; the carrier side is fixed by hand
                logger.warning(f"Carrier cancellation failed for {order.order_id}: {message}")
        order.cancelled_at = timezone.now()
        order.admin_cancellation_reason = reason
        order.save()
        logger.info(f"Order {order.order_id} cancelled")

    # ---- replacement ----

    def replacement_eligibility(self, order, now=None) -> ReplacementEligibility:
        now = now or timezone.now()
        if order.status not in REPLACEABLE_STATUSES:
            return ReplacementEligibility(
                False, "order_not_delivered", "Order must be delivered before requesting replacement",
            )
        if order.replacement_requested:
            return ReplacementEligibility(
                False, "replacement_already_requested", "Replacement already requested for this order",
                replacement_status=order.replacement_status,
            )

        first_item = order.items.select_related("product").first()
        product = first_item.product if first_item else None
        if product is None or not product.has_replacement_policy:
            return ReplacementEligibility(
                False, "no_replacement_policy", "This product does not have a replacement policy",
            )

        delivery_date = order.delivered_at or order.expected_delivery_date or order.created_at
        deadline = delivery_date + timedelta(days=product.replacement_days)
        if now > deadline:
            return ReplacementEligibility(
                False,
                "replacement_period_expired",
                f"Replacement period expired. Replacement policy allows replacements within "
                f"{product.replacement_days} days of delivery.",
                policy_days=product.replacement_days,
                policy=product.replacement_policy,
                delivery_date=delivery_date,
                deadline=deadline,
            )

        return ReplacementEligibility(
            True,
            policy_days=product.replacement_days,
            policy=product.replacement_policy,
            delivery_date=delivery_date,
            deadline=deadline,
            days_remaining=math.ceil((deadline - now).total_seconds() / 86400),
        )

    def request_replacement(self, order, reason, now=None):
        reason = (reason or "").strip()
        if not reason:
            raise ValidationFailed("Replacement reason is required")
        now = now or timezone.now()
        eligibility = self.replacement_eligibility(order, now=now)
        if not eligibility.eligible:
            raise RuleViolation(eligibility.message, code=eligibility.reason)

        updated = Order.objects.filter(pk=order.pk, replacement_requested=False).update(
            replacement_requested=True,
            replacement_requested_at=now,
            replacement_reason=reason,
            replacement_status="pending",
            updated_at=timezone.now(),
        )
        if not updated:
            raise RuleViolation(
                "Replacement already requested for this order", code="replacement_already_requested"
            )
        order.refresh_from_db()
        logger.info(f"Replacement requested for {order.order_id}")
        return order

    def cancel_replacement_request(self, order):
        if not order.replacement_requested:
            raise RuleViolation("No replacement request found for this order", code="no_replacement_request")
        if order.replacement_status != "pending":
            raise RuleViolation(
                "Cannot cancel replacement request that is not pending", code="replacement_not_pending"
            )
        order.replacement_requested = False
        order.replacement_requested_at = None
        order.replacement_reason = ""
        order.replacement_status = ""
        order.replacement_approved_at = None
        order.replacement_rejected_at = None
        order.replacement_rejection_reason = ""
        order.save()
        return order

    @staticmethod
    def _require_pending_replacement(order):
        if not order.replacement_requested:
            raise RuleViolation("No replacement request found for this order", code="no_replacement_request")
        if order.replacement_status != "pending":
            raise RuleViolation("Replacement request is not pending", code="replacement_not_pending")

    def approve_replacement(self, order, admin_notes=""):
        """Ship the same items again at no cost.

        If the carrier refuses the shipment the request is rejected with the
        carrier's reason and ``CarrierError`` is raised.
        """
        self._require_pending_replacement(order)
        success, result = self.api.create_replacement_order(order, order.replacement_reason)
        order.replacement_admin_notes = admin_notes or ""

        if not success:
            order.replacement_status = "rejected"
            order.replacement_rejected_at = timezone.now()
            order.replacement_rejection_reason = f"Failed to create shipping order: {result}"
            order.save()
            logger.error(f"Replacement for {order.order_id} rejected: {result}")
            raise CarrierError(f"Replacement rejected due to shipping order creation failure: {result}")

        order.replacement_status = "approved"
        order.replacement_approved_at = timezone.now()
        order.replacement_shipment_id = result["shipment_id"]
        order.replacement_courier = "Shiprocket"
        order.replacement_shiprocket_order_id = result["replacement_order_id"]
        order.save()
        logger.info(f"Replacement approved for {order.order_id}: {result['replacement_order_id']}")
        return order, result

    def reject_replacement(self, order, rejection_reason, admin_notes=""):
        rejection_reason = (rejection_reason or "").strip()
        if not rejection_reason:
            raise ValidationFailed("Rejection reason is required")
        self._require_pending_replacement(order)
        order.replacement_status = "rejected"
        order.replacement_rejected_at = timezone.now()
        order.replacement_rejection_reason = rejection_reason
        order.replacement_admin_notes = admin_notes or ""
        order.save()
        return order

    def complete_replacement(self, order, admin_notes=""):
        if not order.replacement_requested:
            raise RuleViolation("No replacement request found for this order", code="no_replacement_request")
        if order.replacement_status != "approved":
            raise RuleViolation(
                "Replacement must be approved before marking as completed", code="replacement_not_approved"
            )
        order.replacement_status = "completed"
        order.replacement_completed_at = timezone.now()
        if admin_notes:
            order.replacement_admin_notes = admin_notes
        order.save()
        return order
