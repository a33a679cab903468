from django.urls import path
from . import views

urlpatterns = [
    path("", views.promotion_list, name="promotion_list"),
    path("apply", views.apply_promotion, name="apply_promotion"),
    path("<int:promotion_id>", views.promotion_detail, name="promotion_detail"),
]
