import logging

from django.core.paginator import Paginator
from django.db import IntegrityError, transaction
from django.db.models import Avg, Count, F
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from catalog.models import Product
from storefront.decorators import api_login_required, json_errors, parse_json_body
from storefront.exceptions import Forbidden, NotFound, RuleViolation, ValidationFailed

from .models import HelpfulMark, Review, has_received_product

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50


def _rating(value):
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationFailed("Rating must be between 1 and 5")
    return value


def _positive_int(value, default, upper=None):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number < 1:
        return default
    return min(number, upper) if upper else number


def _own_review(request, review_id):
    review = Review.objects.filter(pk=review_id, user=request.user, is_active=True).first()
    if review is None:
        raise NotFound(f"Review not found: {review_id}")
    return review


@require_GET
@json_errors
def product_reviews(request, product_id):
    """Active reviews for a product with pagination and rating stats"""
    sort = request.GET.get("sort", "newest")
    ordering = Review.SORT_ORDERS.get(sort, Review.SORT_ORDERS["newest"])
    limit = _positive_int(request.GET.get("limit"), 10, MAX_PAGE_SIZE)

    reviews = Review.objects.filter(product_id=product_id, is_active=True)
    paginator = Paginator(reviews.order_by(*ordering), limit)
    page = paginator.get_page(_positive_int(request.GET.get("page"), 1))

    stats = reviews.aggregate(average=Avg("rating"), total=Count("id"))
    rating_stats = {str(star): 0 for star in range(1, 6)}
    for row in reviews.values("rating").annotate(count=Count("id")):
        rating_stats[str(row["rating"])] = row["count"]

    return JsonResponse({
        "success": True,
        "reviews": [review.to_dict() for review in page.object_list],
        "pagination": {
            "currentPage": page.number,
            "totalPages": paginator.num_pages,
            "totalReviews": paginator.count,
            "hasMore": page.has_next(),
        },
        "stats": {
            "averageRating": round(float(stats["average"] or 0), 2),
            "totalReviews": stats["total"],
            "ratingStats": rating_stats,
        },
    })


@require_GET
@api_login_required
@json_errors
def can_review(request, product_id):
    existing = Review.objects.filter(product_id=product_id, user=request.user).first()
    if existing is not None:
        return JsonResponse({
            "success": True,
            "canReview": False,
            "reason": "already_reviewed",
            "existingReview": existing.to_dict(),
        })
    if not has_received_product(request.user, product_id):
        return JsonResponse({"success": True, "canReview": False, "reason": "not_purchased"})
    return JsonResponse({"success": True, "canReview": True, "reason": "eligible"})


@csrf_exempt
@require_POST
@api_login_required
@json_errors
def create_review(request):
    data = parse_json_body(request)
    comment = str(data.get("comment") or "").strip()
    if not data.get("productId") or data.get("rating") is None or not comment:
        raise ValidationFailed("Product ID, rating, and comment are required")
    rating = _rating(data.get("rating"))
    product_id = str(data.get("productId")).strip()
    if not product_id.isdigit():
        raise ValidationFailed("productId must be a product id")
    product = get_object_or_404(Product, pk=int(product_id))

    if Review.objects.filter(product=product, user=request.user).exists():
        raise RuleViolation("You have already reviewed this product", code="already_reviewed")
    if not has_received_product(request.user, product.pk):
        raise Forbidden("You can only review products you have received", code="not_purchased")

    try:
        with transaction.atomic():
            review = Review.objects.create(
                product=product,
                user=request.user,
                user_name=request.user.get_full_name() or request.user.username,
                rating=rating,
                title=str(data.get("title") or "").strip()[:200],
                comment=comment,
                verified=True,
                size=str(data.get("size") or "").strip()[:20],
                color=str(data.get("color") or "").strip()[:50],
            )
    except IntegrityError:
        raise RuleViolation("You have already reviewed this product", code="already_reviewed")

    logger.info(f"Review {review.pk} created for product {product.pk} by {request.user.username}")
    return JsonResponse(
        {"success": True, "message": "Review submitted successfully", "review": review.to_dict()},
        status=201,
    )


@csrf_exempt
@require_http_methods(["PUT", "DELETE"])
@api_login_required
@json_errors
def review_detail(request, review_id):
    review = _own_review(request, review_id)

    if request.method == "DELETE":
        review.is_active = False
        review.save(update_fields=["is_active", "updated_at"])
        logger.info(f"Review {review.pk} deleted by {request.user.username}")
        return JsonResponse({"success": True, "message": "Review deleted successfully"})

    data = parse_json_body(request)
    if data.get("rating") is not None:
        review.rating = _rating(data["rating"])
    for field, limit in (("title", 200), ("comment", None), ("size", 20), ("color", 50)):
        value = str(data.get(field) or "").strip()
        if value:
            setattr(review, field, value[:limit] if limit else value)
    review.save()
    return JsonResponse({"success": True, "message": "Review updated successfully", "review": review.to_dict()})


@csrf_exempt
@require_POST
@api_login_required
@json_errors
def toggle_helpful(request, review_id):
    review = Review.objects.filter(pk=review_id, is_active=True).first()
    if review is None:
        raise NotFound(f"Review not found: {review_id}")

    with transaction.atomic():
        mark, created = HelpfulMark.objects.get_or_create(review=review, user=request.user)
        if created:
            Review.objects.filter(pk=review.pk).update(helpful=F("helpful") + 1)
        else:
            mark.delete()
            Review.objects.filter(pk=review.pk, helpful__gt=0).update(helpful=F("helpful") - 1)

    review.refresh_from_db(fields=["helpful"])
    return JsonResponse({
        "success": True,
        "message": "Marked as helpful" if created else "Removed helpful mark",
        "helpful": review.helpful,
    })
