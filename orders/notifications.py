"""Side effects that run after an order transaction commits.

Everything here is queued with ``transaction.on_commit``: nothing runs if the
surrounding transaction rolls back, and a failing consumer is logged without
touching the committed order.
"""
import logging

from django.db import transaction

from cod.repository import PaymentSettingsRepository

from .models import Order
from .utils import (
    send_admin_order_notification,
    send_cancellation_decision_email,
    send_cancellation_request_admin,
    send_customer_order_confirmation,
    send_order_processing_email,
    send_tracking_update_email,
)

logger = logging.getLogger(__name__)


def _enqueue(label, task):
    def run():
        try:
            result = task()
        except Exception as e:
            logger.error(f"{label} failed: {str(e)}", exc_info=True)
            return
        if isinstance(result, tuple) and not result[0]:
            logger.warning(f"{label} did not complete: {result[1]}")

    transaction.on_commit(run)


def queue_order_placed(order, settings_repository=None):
    """Customer confirmation, admin alert and COD analytics for a new order"""
    repository = settings_repository or PaymentSettingsRepository()

    def notify_customer():
        success, message = send_customer_order_confirmation(order, list(order.items.all()))
        if success:
            Order.objects.filter(pk=order.pk).update(customer_notified=True)
        return success, message

    _enqueue(f"Order confirmation for {order.order_id}", notify_customer)
    _enqueue(
        f"Admin notification for {order.order_id}",
        lambda: send_admin_order_notification(order, list(order.items.all())),
    )
    if order.payment_method == "cod":
        _enqueue(
            f"COD analytics for {order.order_id}",
            lambda: repository.record_cod_order(order.cod_charge, order.total),
        )


def queue_processing_email(order):
    _enqueue(f"Processing email for {order.order_id}", lambda: send_order_processing_email(order))


def queue_tracking_email(order):
    _enqueue(f"Tracking email for {order.order_id}", lambda: send_tracking_update_email(order))


def queue_cancellation_request(order):
    _enqueue(f"Cancellation request email for {order.order_id}", lambda: send_cancellation_request_admin(order))


def queue_cancellation_decision(order, approved, by_admin=False):
    _enqueue(
        f"Cancellation decision email for {order.order_id}",
        lambda: send_cancellation_decision_email(order, approved, by_admin=by_admin),
    )
