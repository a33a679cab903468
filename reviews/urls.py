from django.urls import path
from . import views

urlpatterns = [
    path("", views.create_review, name="create_review"),
    path("product/<int:product_id>", views.product_reviews, name="product_reviews"),
    path("can-review/<int:product_id>", views.can_review, name="can_review"),
    path("<int:review_id>", views.review_detail, name="review_detail"),
    path("<int:review_id>/helpful", views.toggle_helpful, name="review_helpful"),
]
