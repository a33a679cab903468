# promotions/models.py
from django.db import models
from django.utils import timezone


class Promotion(models.Model):
    DISCOUNT_TYPE_CHOICES = [
        ("percentage", "Percentage"),
        ("fixed", "Fixed amount"),
    ]

    code = models.CharField(max_length=50, unique=True)
    description = models.CharField(max_length=255)
    discount_type = models.CharField(max_length=10, choices=DISCOUNT_TYPE_CHOICES)
    discount_value = models.DecimalField(max_digits=10, decimal_places=2)
    min_purchase = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    is_active = models.BooleanField(default=True)
    start_date = models.DateTimeField(default=timezone.now, blank=True, null=True)
    end_date = models.DateTimeField(blank=True, null=True)
    # Empty or zero means unlimited
    usage_limit = models.PositiveIntegerField(blank=True, null=True)
    times_used = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)

    @property
    def has_usage_limit(self):
        return bool(self.usage_limit)

    def to_dict(self):
        return {
            "id": self.pk,
            "code": self.code,
            "description": self.description,
            "discountType": self.discount_type,
            "discountValue": float(self.discount_value),
            "minPurchase": float(self.min_purchase),
            "isActive": self.is_active,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "usageLimit": self.usage_limit,
            "timesUsed": self.times_used,
        }

    def __str__(self):
        return f"{self.code} ({self.discount_type} {self.discount_value})"
