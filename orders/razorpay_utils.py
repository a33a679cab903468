# orders/razorpay_utils.py
import hashlib
import hmac
import logging
import time
from decimal import Decimal

from django.conf import settings
import requests

from storefront.exceptions import StoreError

logger = logging.getLogger(__name__)


def to_minor_units(amount):
    """Rupees to paise"""
    return int((Decimal(str(amount)) * 100).to_integral_value())


def create_razorpay_order(amount, currency="INR"):
    """Create a payment-provider order; returns (success, order_or_reason)"""
    payload = {
        "amount": to_minor_units(amount),
        "currency": currency,
        "receipt": f"order_{int(time.time() * 1000)}",
    }
    try:
        response = requests.request(
            "POST",
            f"{settings.RAZORPAY_BASE_URL.rstrip('/')}/orders",
            json=payload,
            auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET),
            timeout=15,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.error(f"Razorpay order creation error: {str(e)}")
        return False, "Failed to create Razorpay order"

    logger.info(f"Razorpay order created: {data.get('id')}")
    return True, {
        "order_id": data.get("id"),
        "amount": data.get("amount"),
        "currency": data.get("currency"),
        "key_id": settings.RAZORPAY_KEY_ID,
    }


def generate_payment_signature(razorpay_order_id, razorpay_payment_id):
    """HMAC-SHA256 over ``orderId|paymentId`` keyed with the account secret"""
    secret = settings.RAZORPAY_KEY_SECRET
    if not secret:
        raise StoreError("Payment verification is not configured", code="payment_not_configured", status=500)
    body = f"{razorpay_order_id}|{razorpay_payment_id}"
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_payment_signature(razorpay_order_id, razorpay_payment_id, razorpay_signature):
    expected = generate_payment_signature(razorpay_order_id, razorpay_payment_id)
    return hmac.compare_digest(expected, str(razorpay_signature or ""))
