# orders/shiprocket_utils.py
import hmac
import logging
import time
from decimal import Decimal

from django.conf import settings
from django.core.cache import caches
from django.utils import timezone
import requests

from storefront.exceptions import CarrierError

logger = logging.getLogger(__name__)

# Package defaults used for every shipment
PACKAGE = {"length": 20, "breadth": 15, "height": 10, "weight": 0.5}


class ShiprocketTokenStore:
    """Bearer token kept in the on-disk ``carrier`` cache.

    The stored value carries its own ``expires_at`` which is checked on every
    read, so a stale entry is never used even if the cache backend keeps it.
    """

    CACHE_KEY = "shiprocket_token"

    def __init__(self, cache_alias="carrier", ttl_hours=None):
        self.cache = caches[cache_alias]
        self.ttl_seconds = float(ttl_hours or settings.SHIPROCKET_TOKEN_TTL_HOURS) * 3600

    def get(self):
        data = self.cache.get(self.CACHE_KEY)
        if not isinstance(data, dict):
            return None
        if data.get("token") and data.get("expires_at", 0) > time.time():
            return data["token"]
        return None

    def save(self, token):
        # Concurrent refreshes each write a complete value; last writer wins
        self.cache.set(
            self.CACHE_KEY,
            {"token": token, "expires_at": time.time() + self.ttl_seconds},
            timeout=int(self.ttl_seconds),
        )

    def clear(self):
        self.cache.delete(self.CACHE_KEY)


class ShiprocketAPI:
    """Shiprocket API client with cached authentication and retry logic"""

    MAX_ATTEMPTS = 3
    RETRY_BACKOFF = 1

    def __init__(self, token_store=None):
        self.base_url = settings.SHIPROCKET_BASE_URL.strip().rstrip("/")
        self.email = settings.SHIPROCKET_EMAIL
        self.password = settings.SHIPROCKET_API_PASSWORD
        self.pickup_pincode = settings.SHIPROCKET_PICKUP_PINCODE
        self.pickup_location = settings.SHIPROCKET_PICKUP_LOCATION
        self.token_store = token_store or ShiprocketTokenStore()

    # ---- authentication ----

    def _authenticate(self):
        """Log in and cache a fresh token"""
        if not self.email or not self.password:
            raise CarrierError("Shiprocket credentials are not configured")
        try:
            response = requests.request(
                "POST",
                f"{self.base_url}/auth/login",
                json={"email": self.email, "password": self.password},
                timeout=10,
            )
            response.raise_for_status()
            token = response.json().get("token")
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Shiprocket auth error: {str(e)}")
            raise CarrierError("Failed to fetch new Shiprocket token")

        if not token:
            logger.error("Shiprocket auth failed: no token in response")
            raise CarrierError("Failed to fetch new Shiprocket token")

        self.token_store.save(token)
        logger.info(f"Shiprocket token refreshed ({token[:5]}...)")
        return token

    def get_token(self):
        token = self.token_store.get()
        if token:
            return token
        return self._authenticate()

    def get_headers(self):
        return {
            "Authorization": f"Bearer {self.get_token()}",
            "Content-Type": "application/json",
        }

    # ---- transport ----

    def _request(self, method, path, failure_message, payload=None, params=None, timeout=30, retry=False):
        """Authenticated call returning ``(success, json_or_reason)``.

        With ``retry`` (read-only calls only) timeouts and connection errors
        are retried with backoff. Writes are sent once: a timed-out create or
        cancel may already have been applied by the carrier. A 401 always
        drops the cached token and retries once with a fresh one.
        """
        url = f"{self.base_url}{path}"
        reauthenticated = False
        attempt = 0
        max_attempts = self.MAX_ATTEMPTS if retry else 1

        while True:
            try:
                headers = self.get_headers()
            except CarrierError as e:
                return False, e.message

            try:
                response = requests.request(method, url, json=payload, params=params, headers=headers, timeout=timeout)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                attempt += 1
                logger.warning(f"Shiprocket {path} attempt {attempt} failed: {str(e)}")
                if attempt >= max_attempts:
                    return False, failure_message
                time.sleep(self.RETRY_BACKOFF * 2 ** (attempt - 1))
                continue
            except requests.exceptions.RequestException as e:
                logger.error(f"Shiprocket {path} error: {str(e)}")
                return False, failure_message

            if response.status_code == 401 and not reauthenticated:
                logger.info("Shiprocket token rejected, re-authenticating")
                self.token_store.clear()
                reauthenticated = True
                continue

            try:
                data = response.json()
            except ValueError:
                data = {}

            if not response.ok:
                message = data.get("message") if isinstance(data, dict) else None
                logger.error(f"Shiprocket {path} returned {response.status_code}: {message or response.text[:200]}")
                return False, message or failure_message

            return True, data

    # ---- serviceability ----

    def check_serviceability(self, delivery_pincode, weight=PACKAGE["weight"], cod=False):
        """Couriers able to carry a parcel from the warehouse to ``delivery_pincode``"""
        success, data = self._request(
            "GET",
            "/courier/serviceability",
            "Shiprocket serviceability check failed",
            params={
                "pickup_postcode": self.pickup_pincode,
                "delivery_postcode": delivery_pincode,
                "weight": weight,
                "cod": 1 if cod else 0,
            },
            timeout=10,
            retry=True,
        )
        if not success:
            return False, data

        couriers = (data.get("data") or {}).get("available_courier_companies") or []
        if not couriers:
            logger.warning(f"No courier companies available for {delivery_pincode}")
            return False, "Pincode not serviceable by Shiprocket"

        logger.info(f"Found {len(couriers)} shipping options for {delivery_pincode}")
        return True, couriers

    # ---- orders ----

    def _billing(self, order):
        name_parts = (order.full_name or "").split()
        first_name = name_parts[0] if name_parts else order.full_name
        last_name = " ".join(name_parts[1:]) if len(name_parts) > 1 else "."
        return {
            "billing_customer_name": first_name,
            "billing_last_name": last_name,
            "billing_address": order.address_line1,
            "billing_address_2": order.address_line2 or "",
            "billing_city": order.city,
            "billing_pincode": order.pin_code,
            "billing_state": order.state,
            "billing_country": order.country,
            "billing_email": order.email,
            "billing_phone": order.phone_number,
            "shipping_is_billing": True,
        }

    def build_order_payload(self, order, items):
        """Adhoc order body.

        Item prices are the catalog prices; the COD surcharge is added once to
        ``total`` (and reported as ``cod_charges``), never spread over items.
        """
        order_items = []
        items_total = Decimal("0")
        for item in items:
            order_items.append({
                "name": item.name[:100],
                "sku": item.sku or str(item.product_id or item.pk),
                "units": item.quantity or 1,
                "selling_price": float(item.price),
                **PACKAGE,
            })
            items_total += item.price * (item.quantity or 1)

        is_cod = order.payment_method == "cod"
        payload = {
            "order_id": order.order_id,
            "order_date": timezone.localtime(order.created_at or timezone.now()).strftime("%Y-%m-%d %H:%M"),
            "pickup_location": self.pickup_location,
            **self._billing(order),
            "order_items": order_items,
            "payment_method": "COD" if is_cod else "Prepaid",
            "sub_total": float(order.subtotal),
            "total_discount": float(order.discount),
            "total": float(items_total + (order.cod_charge if is_cod else Decimal("0"))),
            **PACKAGE,
        }
        if is_cod and order.cod_charge:
            payload["cod_charges"] = float(order.cod_charge)
        return payload

    def create_order(self, order, items=None):
        """
        Create order in Shiprocket
        Returns (success, result_dict)
        """
        items = list(order.items.all()) if items is None else items
        success, data = self._request(
            "POST", "/orders/create/adhoc", "Failed to create Shiprocket order",
            payload=self.build_order_payload(order, items),
        )
        if not success:
            return False, data

        if data.get("order_id") and data.get("shipment_id"):
            logger.info(f"Shiprocket order created: {data['order_id']} for {order.order_id}")
            return True, {
                "order_id": str(data["order_id"]),
                "shipment_id": str(data["shipment_id"]),
                "awb_code": data.get("awb_code") or "",
                "courier_name": data.get("courier_name") or "",
            }

        logger.error(f"Shiprocket order creation failed for {order.order_id}: {data}")
        return False, data.get("message") or "Failed to create Shiprocket order"

    def create_replacement_order(self, order, reason=""):
        """Zero-value prepaid shipment carrying the same items again"""
        replacement_order_id = f"REP_{order.order_id}_{int(time.time() * 1000)}"
        order_items = [
            {
                "name": f"REPLACEMENT - {item.name}"[:100],
                "sku": item.sku or str(item.product_id or item.pk),
                "units": item.quantity or 1,
                "selling_price": 0,
                **PACKAGE,
            }
            for item in order.items.all()
        ]
        payload = {
            "order_id": replacement_order_id,
            "order_date": timezone.localtime().strftime("%Y-%m-%d %H:%M"),
            "pickup_location": self.pickup_location,
            **self._billing(order),
            "order_items": order_items,
            "payment_method": "Prepaid",
            "sub_total": 0,
            "comment": f"Replacement for order {order.order_id}. Reason: {reason}",
            **PACKAGE,
        }

        success, data = self._request(
            "POST", "/orders/create/adhoc", "Failed to create Shiprocket replacement order", payload=payload,
        )
        if not success:
            return False, data
        if not data.get("shipment_id"):
            return False, data.get("message") or "Failed to create Shiprocket replacement order"

        logger.info(f"Replacement shipment {data['shipment_id']} created for {order.order_id}")
        return True, {
            "order_id": str(data.get("order_id") or ""),
            "shipment_id": str(data["shipment_id"]),
            "replacement_order_id": replacement_order_id,
        }

    def assign_awb(self, shipment_id, courier_id=None):
        payload = {"shipment_id": shipment_id}
        if courier_id:
            payload["courier_id"] = courier_id
        success, data = self._request("POST", "/courier/assign/awb", "Failed to assign AWB", payload=payload)
        if not success:
            return False, data

        assigned = (data.get("response") or {}).get("data") or data.get("data") or {}
        if not assigned.get("awb_code"):
            logger.error(f"AWB assignment returned no code for shipment {shipment_id}: {data}")
            return False, data.get("message") or "Failed to assign AWB"
        return True, {
            "awb_code": assigned["awb_code"],
            "courier_name": assigned.get("courier_name") or "",
            "courier_id": str(assigned.get("courier_company_id") or ""),
        }

    # ---- documents ----

    def generate_pickup(self, shipment_id):
        success, data = self._request(
            "POST", "/courier/generate/pickup", "Failed to generate pickup", payload={"shipment_id": [shipment_id]},
        )
        if not success:
            return False, data
        return True, data.get("response") or data.get("data") or data

    def _document(self, path, payload, url_key, failure_message):
        success, data = self._request("POST", path, failure_message, payload=payload)
        if not success:
            return False, data
        url = data.get(url_key) or (data.get("data") or {}).get(url_key)
        if not url:
            return False, data.get("message") or failure_message
        return True, url

    def generate_manifest(self, shipment_id):
        return self._document(
            "/manifests/generate", {"shipment_id": [shipment_id]}, "manifest_url", "Failed to generate manifest",
        )

    def print_manifest(self, carrier_order_id):
        return self._document(
            "/manifests/print", {"order_ids": [carrier_order_id]}, "manifest_url", "Failed to print manifest",
        )

    def generate_label(self, shipment_id):
        return self._document(
            "/courier/generate/label", {"shipment_id": [shipment_id]}, "label_url", "Failed to generate label",
        )

    def print_invoice(self, carrier_order_id):
        return self._document(
            "/orders/print/invoice", {"ids": [carrier_order_id]}, "invoice_url", "Failed to print invoice",
        )

    # ---- tracking & cancellation ----

    def track_awb(self, awb_code):
        """Fetch tracking details for an AWB"""
        success, data = self._request(
            "GET", f"/courier/track/awb/{awb_code}", "Failed to track shipment", timeout=15, retry=True,
        )
        if not success:
            return False, data
        tracking = data.get("tracking_data") or (data.get("data") or {}).get("tracking_data") or data.get("data")
        if not tracking:
            return False, "Tracking data not available"
        return True, tracking

    def cancel_orders(self, carrier_order_ids):
        ids = [i for i in carrier_order_ids if i]
        if not ids:
            return False, "No Shiprocket order to cancel"
        success, data = self._request("POST", "/orders/cancel", "Failed to cancel Shiprocket order", payload={"ids": ids})
        if success:
            logger.info(f"Shiprocket orders cancelled: {ids}")
        return success, data

    @staticmethod
    def verify_webhook_token(token):
        """Compare the webhook's shared token in constant time; no secret configured means no check"""
        secret = settings.SHIPROCKET_WEBHOOK_SECRET
        if not secret:
            return True
        if not token:
            return False
        return hmac.compare_digest(secret.encode("utf-8"), str(token).encode("utf-8"))
