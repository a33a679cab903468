from django.contrib import admin
from .models import PaymentSettings


@admin.register(PaymentSettings)
class PaymentSettingsAdmin(admin.ModelAdmin):
    list_display = ("__str__", "pricing_type", "fixed_amount", "min_order_value", "max_order_value", "updated_at")
    readonly_fields = ("total_cod_orders", "total_cod_revenue", "average_cod_charge", "analytics_updated_at", "updated_at")

    fieldsets = (
        ("COD Pricing", {
            "fields": ("cod_enabled", "pricing_type", "fixed_amount", "percentage", "min_charge", "max_charge", "tiers")
        }),
        ("Location & Courier Overrides", {
            "fields": ("location_based_enabled", "zones", "courier_charges_enabled", "couriers")
        }),
        ("COD Rules", {
            "fields": (
                "min_order_value", "max_order_value",
                "excluded_products", "excluded_categories", "excluded_pincodes", "excluded_states",
                "time_restrictions_enabled", "start_time", "end_time", "days_of_week",
            )
        }),
        ("Online Payment", {
            "fields": ("online_payment_enabled",)
        }),
        ("COD Analytics", {
            "fields": ("total_cod_orders", "total_cod_revenue", "average_cod_charge", "analytics_updated_at", "updated_at"),
            "classes": ("collapse",)
        }),
    )

    def has_add_permission(self, request):
        return not PaymentSettings.objects.exists()
