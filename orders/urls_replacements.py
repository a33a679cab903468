from django.urls import path
from . import views_replacements as views

urlpatterns = [
    path("check-eligibility/<str:order_id>", views.check_eligibility, name="replacement_eligibility"),
    path("request/<str:order_id>", views.request_replacement, name="request_replacement"),
    path("mine", views.my_replacements, name="my_replacements"),
    path("cancel/<str:order_id>", views.cancel_replacement, name="cancel_replacement"),
    path("admin/all", views.admin_all_replacements, name="admin_all_replacements"),
    path("admin/approve/<str:order_id>", views.admin_approve, name="approve_replacement"),
    path("admin/reject/<str:order_id>", views.admin_reject, name="reject_replacement"),
    path("admin/complete/<str:order_id>", views.admin_complete, name="complete_replacement"),
]
