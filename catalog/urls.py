from django.urls import path
from . import views

urlpatterns = [
    path("products/<int:product_id>/variants", views.product_variants, name="product_variants"),
    path("products/<int:product_id>/stock", views.update_stock, name="product_stock_update"),
]
