from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    # ============ ORDERS, CARRIER WEBHOOK & PAYMENTS ============
    path("orders/", include("orders.urls")),
    path("replacements/", include("orders.urls_replacements")),
    path("payments/", include("orders.urls_payments")),

    # ============ PRICING ============
    path("promotions/", include("promotions.urls")),
    path("cod/", include("cod.urls")),

    # ============ CATALOG ============
    path("catalog/", include("catalog.urls")),
    path("reviews/", include("reviews.urls")),

    # ============ ADMIN ============
    path("admin/", admin.site.urls),
]
