import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods

from storefront.decorators import api_admin_required, json_errors, parse_json_body
from storefront.exceptions import ValidationFailed

from .repository import PaymentSettingsRepository

logger = logging.getLogger(__name__)


@csrf_exempt
@require_http_methods(["GET", "PUT"])
@api_admin_required
@json_errors
def cod_settings(request):
    repository = PaymentSettingsRepository()
    if request.method == "GET":
        settings_row = repository.get_or_create_default()
    else:
        data = parse_json_body(request)
        settings_row = repository.update_cod(data.get("cod", data))
        logger.info(f"COD settings changed by {request.user.username}")

    return JsonResponse({
        "success": True,
        "cod": settings_row.cod_dict(),
        "onlinePayment": {"enabled": settings_row.online_payment_enabled},
    })


@require_GET
@api_admin_required
@json_errors
def cod_summary(request):
    settings_row = PaymentSettingsRepository().get_or_create_default()
    return JsonResponse({"success": True, "summary": settings_row.analytics_dict()})


@csrf_exempt
@require_http_methods(["PUT"])
@api_admin_required
@json_errors
def online_payment(request):
    data = parse_json_body(request)
    if not isinstance(data.get("enabled"), bool):
        raise ValidationFailed("enabled must be true or false")
    settings_row = PaymentSettingsRepository().set_online_payment(data["enabled"])
    return JsonResponse({"success": True, "onlinePayment": {"enabled": settings_row.online_payment_enabled}})


@require_GET
@json_errors
def online_payment_status(request):
    """Public: lets checkout hide the online option"""
    enabled = PaymentSettingsRepository().online_payment_enabled()
    return JsonResponse({"success": True, "enabled": enabled})
