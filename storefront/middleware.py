# storefront/middleware.py
import logging
import time

from django.http import HttpRequest

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'Referrer-Policy': 'same-origin',
    'Strict-Transport-Security': 'max-age=31536000',
}

# Responses under these prefixes carry per-customer order or payment state
PRIVATE_PREFIXES = ('/orders/', '/payments/', '/replacements/', '/cod/')


class ApiResponseMiddleware:
    """Security headers on every response, no-store on private API paths,
    and one timing line per API request."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request: HttpRequest):
        started = time.monotonic()
        response = self.get_response(request)

        for header, value in SECURITY_HEADERS.items():
            response.setdefault(header, value)

        if request.path.startswith(PRIVATE_PREFIXES):
            response['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
            response['Pragma'] = 'no-cache'
            response['Expires'] = '0'

        if not request.path.startswith('/admin/'):
            elapsed_ms = (time.monotonic() - started) * 1000
            log = logger.warning if response.status_code >= 500 else logger.info
            log(f"{request.method} {request.path} -> {response.status_code} ({elapsed_ms:.0f} ms)")

        return response
