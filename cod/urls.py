from django.urls import path
from . import views

urlpatterns = [
    path("settings", views.cod_settings, name="cod_settings"),
    path("summary", views.cod_summary, name="cod_summary"),
    path("online-payment", views.online_payment, name="online_payment"),
    path("online-payment-status", views.online_payment_status, name="online_payment_status"),
]
