import json
import logging
from functools import wraps

from django.http import Http404, JsonResponse

from .exceptions import StoreError, ValidationFailed

logger = logging.getLogger(__name__)


def api_login_required(view):
    """Reject anonymous callers with a bare 401"""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({"success": False, "error": "Authentication required"}, status=401)
        return view(request, *args, **kwargs)
    return wrapper


def api_admin_required(view):
    """Staff-only endpoints; no detail beyond a generic message"""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({"success": False, "error": "Authentication required"}, status=401)
        if not request.user.is_staff:
            return JsonResponse({"success": False, "error": "Access denied. Admin only."}, status=403)
        return view(request, *args, **kwargs)
    return wrapper


def json_errors(view):
    """Translate domain errors into JSON responses and log everything else"""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except StoreError as e:
            return JsonResponse(e.as_dict(), status=e.status)
        except Http404 as e:
            return JsonResponse({"success": False, "error": str(e) or "Not found", "code": "not_found"}, status=404)
        except Exception as e:
            logger.error(f"Unhandled error in {view.__name__}: {str(e)}", exc_info=True)
            return JsonResponse({"success": False, "error": "Internal server error"}, status=500)
    return wrapper


def parse_json_body(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationFailed("Request body must be valid JSON")
    if not isinstance(data, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return data
