from django.contrib import admin
from .models import Product, ProductImage, Variant


class ProductImageInline(admin.TabularInline):
    model = ProductImage
    extra = 0
    fields = ("url", "color", "position")


class VariantInline(admin.TabularInline):
    model = Variant
    extra = 0
    fields = ("color", "size", "stock")


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "category", "price", "sale_price", "status", "replacement_days", "date_added")
    list_filter = ("category", "status")
    search_fields = ("name", "slug", "category")
    prepopulated_fields = {"slug": ("name",)}
    inlines = [ProductImageInline, VariantInline]
