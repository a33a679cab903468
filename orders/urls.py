from django.urls import path
from . import views

urlpatterns = [
    # ============ Checkout ============
    path("", views.create_order, name="create_order"),
    path("check-cod", views.check_cod, name="check_cod"),
    path("create-razorpay-order", views.create_payment_order, name="create_razorpay_order"),

    # ============ Customer ============
    path("mine", views.my_orders, name="my_orders"),
    path("info/<str:order_id>", views.order_info, name="order_info"),
    path("discount/<str:order_id>", views.order_discount, name="order_discount"),
    path("track/<str:order_id>", views.track_order, name="track_order"),
    path("request-cancellation/<str:order_id>", views.request_cancellation, name="request_cancellation"),

    # ============ Admin ============
    path("admin/all", views.admin_all_orders, name="admin_all_orders"),
    path(
        "admin/cancellation/<str:order_id>/<str:action>",
        views.admin_cancellation_decision,
        name="admin_cancellation_decision",
    ),
    path("admin/cancel/<str:order_id>", views.admin_cancel_order, name="admin_cancel_order"),
    path("admin/add-to-shiprocket/<str:order_id>", views.admin_add_to_shiprocket, name="admin_add_to_shiprocket"),
    path("admin/assign-awb/<str:order_id>", views.admin_assign_awb, name="admin_assign_awb"),
    path("admin/documents/<str:order_id>/<str:kind>", views.admin_documents, name="admin_documents"),
    path("admin/courier-options/<str:order_id>", views.admin_courier_options, name="admin_courier_options"),

    # ============ Webhooks ============
    path("webhook/shiprocket", views.shiprocket_webhook, name="shiprocket_webhook"),
]
