import logging
from decimal import Decimal, InvalidOperation

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from cod.repository import PaymentSettingsRepository
from storefront.decorators import api_admin_required, api_login_required, json_errors, parse_json_body
from storefront.exceptions import Forbidden, NotFound, RuleViolation, StoreError, ValidationFailed

from .lifecycle import OrderLifecycle
from .models import Order
from .razorpay_utils import create_razorpay_order, verify_payment_signature
from .services import OrderService
from .shiprocket_utils import ShiprocketAPI

logger = logging.getLogger(__name__)


def _visible_order(request, identifier):
    """Owner or staff only; anyone else gets the same 404 as a missing order"""
    order = Order.objects.resolve(identifier)
    if not order.is_visible_to(request.user):
        raise NotFound(f"Order not found: {identifier}")
    return order


# ==================== CHECKOUT ====================

@csrf_exempt
@require_POST
@api_login_required
@json_errors
def check_cod(request):
    data = parse_json_body(request)
    quote = OrderService().check_cod(data.get("cartItems"), data.get("address") or {})
    return JsonResponse({"success": True, **quote.to_dict()})


@csrf_exempt
@require_POST
@api_login_required
@json_errors
def create_order(request):
    """Create an order from the submitted cart with server-side pricing"""
    data = parse_json_body(request)
    order = OrderService().create_order(
        user=request.user,
        cart_items=data.get("cartItems"),
        address=data.get("address"),
        payment_method=data.get("paymentMethod"),
        payment_result=data.get("paymentResult"),
        promo_code=data.get("promoCode"),
    )
    return JsonResponse({"success": True, "order": order.to_dict()}, status=201)


@csrf_exempt
@require_POST
@api_login_required
@json_errors
def create_payment_order(request):
    if not PaymentSettingsRepository().online_payment_enabled():
        raise Forbidden("Online payment is currently disabled by admin.", code="online_payment_disabled")

    data = parse_json_body(request)
    try:
        amount = Decimal(str(data.get("amount")))
    except (InvalidOperation, ValueError):
        raise ValidationFailed("Invalid amount")
    if not amount.is_finite() or amount <= 0:
        raise ValidationFailed("Invalid amount")

    success, result = create_razorpay_order(amount, data.get("currency") or "INR")
    if not success:
        raise StoreError(result, code="payment_provider_error", status=502)
    return JsonResponse({"success": True, **result})


@csrf_exempt
@require_POST
@json_errors
def verify_payment(request):
    data = parse_json_body(request)
    fields = ("razorpay_order_id", "razorpay_payment_id", "razorpay_signature")
    missing = [field for field in fields if not data.get(field)]
    if missing:
        raise ValidationFailed(f"Missing payment fields: {', '.join(missing)}")

    if not verify_payment_signature(*(data[field] for field in fields)):
        logger.warning(f"Payment signature mismatch for {data['razorpay_order_id']}")
        raise RuleViolation("Invalid payment signature", code="invalid_signature")

    logger.info(f"Payment {data['razorpay_payment_id']} verified")
    return JsonResponse({"success": True, "message": "Payment verified successfully"})


# ==================== CUSTOMER ORDERS ====================

@require_GET
@api_login_required
@json_errors
def order_info(request, order_id):
    order = _visible_order(request, order_id)
    return JsonResponse({"success": True, "order": order.to_dict()})


@require_GET
@api_login_required
@json_errors
def my_orders(request):
    orders = (
        Order.objects.filter(user=request.user)
        .prefetch_related("items__product__images")
    )
    return JsonResponse({"success": True, "orders": [order.to_dict(list(order.items.all())) for order in orders]})


@require_GET
@json_errors
def order_discount(request, order_id):
    order = Order.objects.resolve(order_id)
    return JsonResponse({
        "success": True,
        "orderId": order.order_id,
        "discount": float(order.discount),
        "discountCode": order.discount_code,
    })


@require_GET
@api_login_required
@json_errors
def track_order(request, order_id):
    order = _visible_order(request, order_id)
    tracking = OrderLifecycle().track(order)
    return JsonResponse({"success": True, "tracking": tracking})


@csrf_exempt
@require_POST
@api_login_required
@json_errors
def request_cancellation(request, order_id):
    order = _visible_order(request, order_id)
    data = parse_json_body(request)
    OrderLifecycle().request_cancellation(order, data.get("reason"))
    return JsonResponse({
        "success": True,
        "message": "Cancellation request submitted successfully. Admin will review your request.",
    })


# ==================== ADMIN ====================

@require_GET
@api_admin_required
@json_errors
def admin_all_orders(request):
    orders = Order.objects.select_related("user").prefetch_related("items__product__images")
    status = request.GET.get("status")
    if status:
        orders = orders.filter(status=status)
    return JsonResponse({"success": True, "orders": [order.to_dict(list(order.items.all())) for order in orders]})


@csrf_exempt
@require_POST
@api_admin_required
@json_errors
def admin_cancellation_decision(request, order_id, action):
    if action not in ("approve", "reject"):
        raise ValidationFailed("Invalid action. Must be 'approve' or 'reject'")
    order = Order.objects.resolve(order_id)
    data = parse_json_body(request)
    OrderLifecycle().decide_cancellation(order, action == "approve", data.get("adminReason"))
    return JsonResponse({
        "success": True,
        "message": f"Cancellation request {action}d successfully",
        "order": order.to_dict(),
    })


@csrf_exempt
@require_POST
@api_admin_required
@json_errors
def admin_cancel_order(request, order_id):
    order = Order.objects.resolve(order_id)
    data = parse_json_body(request)
    OrderLifecycle().admin_cancel(order, data.get("reason"))
    logger.info(f"Order {order.order_id} cancelled by {request.user.username}")
    return JsonResponse({"success": True, "message": "Order cancelled successfully", "order": order.to_dict()})


@csrf_exempt
@require_POST
@api_admin_required
@json_errors
def admin_add_to_shiprocket(request, order_id):
    order = Order.objects.resolve(order_id)
    OrderLifecycle().create_shipment(order)
    return JsonResponse({
        "success": True,
        "message": "Shiprocket order created successfully. Order is now being processed for shipment.",
        "shiprocketOrderId": order.shiprocket_order_id,
        "shipmentId": order.shipment_id,
    })


@csrf_exempt
@require_POST
@api_admin_required
@json_errors
def admin_assign_awb(request, order_id):
    order = Order.objects.resolve(order_id)
    data = parse_json_body(request)
    OrderLifecycle().assign_awb(order, courier_id=data.get("courierId"))
    return JsonResponse({
        "success": True,
        "awbCode": order.awb_code,
        "courierName": order.courier_name,
        "courierId": order.courier_id,
    })


@csrf_exempt
@require_POST
@api_admin_required
@json_errors
def admin_documents(request, order_id, kind):
    order = Order.objects.resolve(order_id)
    result = OrderLifecycle().generate_documents(order, kind)
    return JsonResponse({"success": True, "kind": kind, "result": result, "shipping": order.shipping_dict()})


@require_GET
@api_admin_required
@json_errors
def admin_courier_options(request, order_id):
    order = Order.objects.resolve(order_id)
    options = OrderLifecycle().courier_options(order)
    return JsonResponse({"success": True, "message": "Courier service options retrieved successfully", **options})


# ==================== WEBHOOK ====================

@csrf_exempt
@require_POST
@json_errors
def shiprocket_webhook(request):
    """Courier assignment and status pushes from Shiprocket"""
    logger.info("Shiprocket webhook received")

    if not ShiprocketAPI.verify_webhook_token(request.headers.get("x-api-key")):
        logger.warning("Shiprocket webhook rejected: bad token")
        return JsonResponse({"success": False, "error": "Unauthorized"}, status=401)

    order = OrderLifecycle().handle_carrier_webhook(parse_json_body(request))
    return JsonResponse({"success": True, "message": "Order updated successfully", "orderId": order.order_id})
