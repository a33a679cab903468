from django.shortcuts import get_object_or_404
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods

from storefront.decorators import api_admin_required, json_errors, parse_json_body

from .inventory import StockUpdate, apply_stock_update
from .models import Product


def _variant_dict(variant):
    return {
        "color": variant.color,
        "size": variant.size or "No Size",
        "stock": variant.stock,
        "sku": variant.sku,
    }


@require_GET
@json_errors
def product_variants(request, product_id):
    """Variants for inventory management, grouped by color"""
    product = get_object_or_404(Product, pk=product_id)
    variants = list(product.variants.all())

    variants_by_color = {}
    for variant in variants:
        variants_by_color.setdefault(variant.color, []).append(_variant_dict(variant))

    return JsonResponse({
        "success": True,
        "productId": product.pk,
        "productName": product.name,
        "variants": [_variant_dict(v) for v in variants],
        "variantsByColor": variants_by_color,
        "totalVariants": len(variants),
        "totalStock": sum(v.stock for v in variants),
    })


@csrf_exempt
@require_http_methods(["PATCH"])
@api_admin_required
@json_errors
def update_stock(request, product_id):
    product = get_object_or_404(Product, pk=product_id)
    update = StockUpdate.from_payload(parse_json_body(request))
    changed = apply_stock_update(product, update)
    return JsonResponse({
        "success": True,
        "updateKind": update.kind.value,
        "variants": [_variant_dict(v) for v in changed],
    })
