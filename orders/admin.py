from django.contrib import admin
from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    fields = ("name", "product", "color", "size", "sku", "price", "quantity", "image_url")
    readonly_fields = ("product",)
    can_delete = False  # Items are a snapshot of the cart


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_id",
        "full_name",
        "email",
        "status",
        "payment_method",
        "shipping_status",
        "awb_code",
        "courier_name",
        "total",
        "cancellation_requested",
        "replacement_status",
        "created_at",
    )

    list_filter = (
        "status",
        "shipping_status",
        "payment_method",
        "cancellation_requested",
        "replacement_status",
        "created_at",
    )

    search_fields = (
        "order_id",
        "full_name",
        "email",
        "phone_number",
        "shiprocket_order_id",
        "awb_code",
    )

    # Carrier fields are written by the lifecycle and the webhook
    readonly_fields = (
        "order_id",
        "subtotal",
        "discount",
        "cod_charge",
        "total",
        "shiprocket_order_id",
        "shipment_id",
        "awb_code",
        "courier_name",
        "courier_id",
        "label_url",
        "manifest_url",
        "invoice_url",
        "pickup_data",
        "tracking_data",
        "created_at",
        "updated_at",
    )

    inlines = [OrderItemInline]

    fieldsets = (
        ("Customer Information", {
            "fields": ("order_id", "user", "full_name", "email", "phone_number")
        }),
        ("Shipping Address", {
            "fields": ("address_line1", "address_line2", "city", "state", "pin_code", "country")
        }),
        ("Payment & Pricing", {
            "fields": (
                "payment_method",
                "payment_id",
                "payment_status",
                "subtotal",
                "discount_code",
                "discount",
                "cod_charge",
                "total",
            )
        }),
        ("Order Status", {
            "fields": ("status", "customer_notified")
        }),
        ("Shiprocket Tracking", {
            "fields": (
                "shiprocket_order_id",
                "shipment_id",
                "awb_code",
                "courier_name",
                "courier_id",
                "shipping_status",
                "expected_delivery_date",
                "pickup_scheduled_date",
                "delivered_at",
                "label_url",
                "manifest_url",
                "invoice_url",
            ),
            "classes": ("collapse",)
        }),
        ("Cancellation", {
            "fields": (
                "cancellation_requested",
                "cancellation_requested_at",
                "cancellation_reason",
                "admin_cancellation_reason",
                "cancelled_at",
            ),
            "classes": ("collapse",)
        }),
        ("Replacement", {
            "fields": (
                "replacement_requested",
                "replacement_status",
                "replacement_reason",
                "replacement_admin_notes",
                "replacement_requested_at",
                "replacement_approved_at",
                "replacement_rejected_at",
                "replacement_rejection_reason",
                "replacement_completed_at",
                "replacement_shipment_id",
                "replacement_courier",
                "replacement_shiprocket_order_id",
            ),
            "classes": ("collapse",)
        }),
        ("System Metadata", {
            "fields": ("pickup_data", "tracking_data", "created_at", "updated_at"),
            "classes": ("collapse",)
        }),
    )

    def has_delete_permission(self, request, obj=None):
        # Orders are never hard-deleted
        return False

    def get_queryset(self, request):
        return super().get_queryset(request).prefetch_related("items")


@admin.register(OrderItem)
class OrderItemAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "name", "color", "size", "sku", "price", "quantity")
    list_filter = (("order__created_at", admin.DateFieldListFilter),)
    search_fields = ("name", "order__order_id", "sku")
    list_select_related = ("order",)
