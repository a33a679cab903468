from django.contrib import admin
from .models import Review


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ("product", "user_name", "rating", "verified", "helpful", "is_active", "created_at")
    list_filter = ("rating", "verified", "is_active")
    search_fields = ("user_name", "title", "comment", "product__name")
    readonly_fields = ("helpful", "created_at", "updated_at")
    list_select_related = ("product",)
