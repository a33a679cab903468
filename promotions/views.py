import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from django.db import IntegrityError, transaction
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods, require_POST

from storefront.decorators import api_admin_required, json_errors, parse_json_body
from storefront.exceptions import RuleViolation, ValidationFailed

from .evaluator import PROMOTION_NOT_FOUND, evaluate_promotion
from .models import Promotion

logger = logging.getLogger(__name__)

FIELD_MAP = {
    "code": "code",
    "description": "description",
    "discountType": "discount_type",
    "discountValue": "discount_value",
    "minPurchase": "min_purchase",
    "isActive": "is_active",
    "startDate": "start_date",
    "endDate": "end_date",
    "usageLimit": "usage_limit",
}


def _decimal(value, field):
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"{field} must be a number")
    if not number.is_finite():
        raise ValidationFailed(f"{field} must be a number")
    if number < 0:
        raise ValidationFailed(f"{field} cannot be negative")
    return number


def _datetime(value, field):
    if value in (None, ""):
        return None
    parsed = parse_datetime(str(value))
    if parsed is None:
        day = parse_date(str(value))
        if day is None:
            raise ValidationFailed(f"{field} must be an ISO date")
        parsed = datetime(day.year, day.month, day.day)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _apply_payload(promotion, data):
    for key, attr in FIELD_MAP.items():
        if key not in data:
            continue
        value = data[key]
        if attr in ("discount_value", "min_purchase"):
            value = _decimal(value, key)
        elif attr in ("start_date", "end_date"):
            value = _datetime(value, key)
        elif attr == "usage_limit":
            if value in (None, ""):
                value = None
            elif isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationFailed("usageLimit must be a non-negative integer")
        elif attr == "is_active":
            value = bool(value)
        setattr(promotion, attr, value)

    if not (promotion.code or "").strip():
        raise ValidationFailed("code is required")
    if not promotion.description:
        raise ValidationFailed("description is required")
    if promotion.discount_type not in dict(Promotion.DISCOUNT_TYPE_CHOICES):
        raise ValidationFailed("discountType must be 'percentage' or 'fixed'")
    if promotion.discount_value is None:
        raise ValidationFailed("discountValue is required")
    if promotion.start_date and promotion.end_date and promotion.end_date < promotion.start_date:
        raise ValidationFailed("endDate must be after startDate")


def _save(promotion):
    try:
        with transaction.atomic():
            promotion.save()
    except IntegrityError:
        raise RuleViolation("Promotion code already exists.", code="duplicate_code")


@csrf_exempt
@require_POST
@json_errors
def apply_promotion(request):
    """Preview a discount code against the cart total; usage is not counted"""
    data = parse_json_body(request)
    code = (data.get("code") or "").strip()
    if not code:
        raise ValidationFailed("Promotion code is required.")

    cart_total = _decimal(data.get("cartTotal", 0), "cartTotal")
    result = evaluate_promotion(code, cart_total)

    if not result.valid:
        status = 404 if result.reason == PROMOTION_NOT_FOUND else 400
        return JsonResponse({"success": False, "error": result.message, "code": result.reason}, status=status)

    return JsonResponse({
        "success": True,
        "message": result.message,
        "discount": float(result.discount_amount),
        "code": result.code,
    })


@csrf_exempt
@require_http_methods(["GET", "POST"])
@api_admin_required
@json_errors
def promotion_list(request):
    if request.method == "GET":
        return JsonResponse({"success": True, "promotions": [p.to_dict() for p in Promotion.objects.all()]})

    promotion = Promotion()
    _apply_payload(promotion, parse_json_body(request))
    _save(promotion)
    logger.info(f"Promotion {promotion.code} created by {request.user.username}")
    return JsonResponse({"success": True, "promotion": promotion.to_dict()}, status=201)


@csrf_exempt
@require_http_methods(["PUT", "DELETE"])
@api_admin_required
@json_errors
def promotion_detail(request, promotion_id):
    promotion = get_object_or_404(Promotion, pk=promotion_id)

    if request.method == "DELETE":
        promotion.delete()
        logger.info(f"Promotion {promotion.code} deleted by {request.user.username}")
        return JsonResponse({"success": True, "message": "Promotion deleted."})

    _apply_payload(promotion, parse_json_body(request))
    _save(promotion)
    return JsonResponse({"success": True, "promotion": promotion.to_dict()})
