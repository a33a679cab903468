# reviews/models.py
from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from orders.models import Order, OrderItem


def has_received_product(user, product_id):
    """True once an order of ``user`` containing the product has been delivered"""
    return OrderItem.objects.filter(
        order__user=user,
        order__status=Order.STATUS_DELIVERED,
        product_id=product_id,
    ).exists()


class Review(models.Model):
    SORT_ORDERS = {
        "newest": ("-created_at",),
        "oldest": ("created_at",),
        "highest": ("-rating", "-created_at"),
        "lowest": ("rating", "-created_at"),
        "helpful": ("-helpful", "-created_at"),
    }

    product = models.ForeignKey("catalog.Product", related_name="reviews", on_delete=models.CASCADE)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="reviews", on_delete=models.CASCADE)
    user_name = models.CharField(max_length=150)
    rating = models.PositiveSmallIntegerField(validators=[MinValueValidator(1), MaxValueValidator(5)])
    title = models.CharField(max_length=200, blank=True, default="")
    comment = models.TextField()
    verified = models.BooleanField(default=False)
    size = models.CharField(max_length=20, blank=True, default="")
    color = models.CharField(max_length=50, blank=True, default="")
    helpful = models.PositiveIntegerField(default=0)

    # Deleted reviews are hidden, and still count as the user's one review
    is_active = models.BooleanField(default=True, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["product", "user"], name="one_review_per_user_product"),
        ]

    def to_dict(self):
        return {
            "id": self.pk,
            "productId": self.product_id,
            "userId": self.user_id,
            "userName": self.user_name,
            "rating": self.rating,
            "title": self.title,
            "comment": self.comment,
            "verified": self.verified,
            "size": self.size,
            "color": self.color,
            "helpful": self.helpful,
            "date": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __str__(self):
        return f"{self.user_name} on {self.product_id}: {self.rating}/5"


class HelpfulMark(models.Model):
    review = models.ForeignKey(Review, related_name="helpful_marks", on_delete=models.CASCADE)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="helpful_marks", on_delete=models.CASCADE)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["review", "user"], name="one_helpful_mark_per_user"),
        ]
