from django.contrib import admin
from .models import Promotion


@admin.register(Promotion)
class PromotionAdmin(admin.ModelAdmin):
    list_display = ("code", "discount_type", "discount_value", "min_purchase", "is_active", "times_used", "usage_limit", "end_date")
    list_filter = ("discount_type", "is_active")
    search_fields = ("code", "description")
    readonly_fields = ("times_used", "created_at", "updated_at")
