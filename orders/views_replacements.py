import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from storefront.decorators import api_admin_required, api_login_required, json_errors, parse_json_body
from storefront.exceptions import NotFound

from .lifecycle import OrderLifecycle
from .models import Order

logger = logging.getLogger(__name__)


def _own_order(request, order_id):
    order = Order.objects.resolve(order_id)
    if order.user_id != request.user.pk:
        raise NotFound(f"Order not found: {order_id}")
    return order


def _replacement_row(order, include_admin=False):
    row = order.replacement_dict()
    row.update({
        "items": [item.to_dict() for item in order.items.all()],
        "total": float(order.total),
        "orderDate": order.created_at.isoformat(),
    })
    if include_admin:
        row["user"] = {"name": order.full_name, "email": order.email, "phone": order.phone_number}
        row["shipping"] = order.shipping_dict()
    return row


# ==================== CUSTOMER ====================

@require_GET
@api_login_required
@json_errors
def check_eligibility(request, order_id):
    order = _own_order(request, order_id)
    eligibility = OrderLifecycle().replacement_eligibility(order)
    return JsonResponse({"success": True, **eligibility.to_dict()})


@csrf_exempt
@require_POST
@api_login_required
@json_errors
def request_replacement(request, order_id):
    order = _own_order(request, order_id)
    data = parse_json_body(request)
    OrderLifecycle().request_replacement(order, data.get("reason"))
    return JsonResponse({
        "success": True,
        "message": "Replacement request submitted successfully",
        "replacementRequest": order.replacement_dict(),
    })


@require_GET
@api_login_required
@json_errors
def my_replacements(request):
    orders = (
        Order.objects.filter(user=request.user, replacement_requested=True)
        .prefetch_related("items__product__images")
        .order_by("-replacement_requested_at")
    )
    return JsonResponse({"success": True, "replacements": [_replacement_row(order) for order in orders]})


@csrf_exempt
@require_POST
@api_login_required
@json_errors
def cancel_replacement(request, order_id):
    order = _own_order(request, order_id)
    OrderLifecycle().cancel_replacement_request(order)
    return JsonResponse({"success": True, "message": "Replacement request cancelled successfully"})


# ==================== ADMIN ====================

@require_GET
@api_admin_required
@json_errors
def admin_all_replacements(request):
    orders = (
        Order.objects.filter(replacement_requested=True)
        .prefetch_related("items__product__images")
        .order_by("-replacement_requested_at")
    )
    status = request.GET.get("status")
    if status:
        orders = orders.filter(replacement_status=status)
    return JsonResponse({
        "success": True,
        "replacements": [_replacement_row(order, include_admin=True) for order in orders],
    })


@csrf_exempt
@require_POST
@api_admin_required
@json_errors
def admin_approve(request, order_id):
    order = Order.objects.resolve(order_id)
    data = parse_json_body(request)
    order, shipment = OrderLifecycle().approve_replacement(order, data.get("adminNotes"))
    logger.info(f"Replacement for {order.order_id} approved by {request.user.username}")
    return JsonResponse({
        "success": True,
        "message": "Replacement approved and Shiprocket order created successfully",
        "replacement": {**order.replacement_dict(), "shiprocketOrder": shipment},
    })


@csrf_exempt
@require_POST
@api_admin_required
@json_errors
def admin_reject(request, order_id):
    order = Order.objects.resolve(order_id)
    data = parse_json_body(request)
    OrderLifecycle().reject_replacement(order, data.get("rejectionReason"), data.get("adminNotes"))
    return JsonResponse({
        "success": True,
        "message": "Replacement request rejected successfully",
        "replacement": order.replacement_dict(),
    })


@csrf_exempt
@require_POST
@api_admin_required
@json_errors
def admin_complete(request, order_id):
    order = Order.objects.resolve(order_id)
    data = parse_json_body(request)
    OrderLifecycle().complete_replacement(order, data.get("adminNotes"))
    return JsonResponse({
        "success": True,
        "message": "Replacement marked as completed successfully",
        "replacement": order.replacement_dict(),
    })
