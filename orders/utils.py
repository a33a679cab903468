import logging
from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone

logger = logging.getLogger(__name__)

DIVIDER = "═══════════════════════════════════════"


def _items_details(items):
    return "\n".join([
        f"• {item.name} (Color: {item.color or '-'}, Size: {item.size or '-'}, Qty: {item.quantity}, Price: ₹{item.price})"
        for item in items
    ])


def _address_block(order):
    lines = [order.full_name, order.address_line1]
    if order.address_line2:
        lines.append(order.address_line2)
    lines.append(f"{order.city}, {order.state} - {order.pin_code}")
    lines.append(order.country)
    lines.append(f"Phone: {order.phone_number}")
    return "\n".join(lines)


def _send(subject, message, recipient, label, order):
    send_mail(
        subject=subject,
        message=message,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[recipient],
        fail_silently=False,
    )
    logger.info(f"{label} sent for Order {order.order_id}")


def send_customer_order_confirmation(order, items):
    """Send order confirmation to customer via EMAIL"""
    try:
        discount_line = f"Discount ({order.discount_code}): -₹{order.discount}\n" if order.discount else ""
        cod_line = f"COD Charge: ₹{order.cod_charge}\n" if order.cod_charge else ""

        message = f"""
Hi {order.full_name},

Thank you for your order! We've received it and will process it shortly.

{DIVIDER}

📋 ORDER DETAILS:
Order ID: {order.order_id}

📦 ITEMS:
{_items_details(items)}

💳 PAYMENT SUMMARY:
Subtotal: ₹{order.subtotal}
{discount_line}{cod_line}TOTAL: ₹{order.total}
Payment Method: {order.get_payment_method_display()}

{DIVIDER}

📍 SHIPPING ADDRESS:
{_address_block(order)}

Thanks for shopping with us!
{settings.STORE_NAME}
        """.strip()

        _send(f"Your Order {order.order_id} is confirmed!", message, order.email, "Customer confirmation", order)
        return True, "Customer email sent successfully"

    except Exception as e:
        logger.error(f"Customer notification failed: {str(e)}")
        return False, str(e)


def send_admin_order_notification(order, items):
    """Send detailed email to admin about new order"""
    try:
        message = f"""
Hello Admin,

A new order has been placed on {settings.STORE_NAME}!

{DIVIDER}

📋 ORDER DETAILS:
Order ID: {order.order_id}
Order Date: {timezone.localtime(order.created_at).strftime('%d-%b-%Y %I:%M %p')}
Status: {order.status.upper()}
Payment Method: {order.get_payment_method_display()}

{DIVIDER}

👤 CUSTOMER DETAILS:
Name: {order.full_name}
Phone: {order.phone_number}
Email: {order.email}

📍 SHIPPING ADDRESS:
{_address_block(order)}

{DIVIDER}

📦 ORDER ITEMS:
{_items_details(items)}

{DIVIDER}

💳 PAYMENT SUMMARY:
Subtotal: ₹{order.subtotal}
Discount: ₹{order.discount}{f' ({order.discount_code})' if order.discount_code else ''}
COD Charge: ₹{order.cod_charge}
TOTAL: ₹{order.total}
        """.strip()

        _send(f"🛒 New Order Received - {order.order_id}", message, settings.ADMIN_ORDER_EMAIL, "Admin notification", order)
        return True, "Admin email sent successfully"

    except Exception as e:
        logger.error(f"Admin notification failed: {str(e)}")
        return False, str(e)


def send_order_processing_email(order):
    """Order handed to the carrier; tracking follows once a courier is assigned"""
    try:
        message = f"""
Hi {order.full_name},

Your order {order.order_id} has been confirmed and is now being processed for shipment.
You will receive tracking information once the courier is assigned.

TOTAL: ₹{order.total}

📍 DELIVERING TO:
{_address_block(order)}

Track your order: {settings.CLIENT_URL}/track/{order.order_id}

{settings.STORE_NAME}
        """.strip()

        _send(f"Order Confirmed & Processing - #{order.order_id}", message, order.email, "Processing email", order)
        return True, "Processing email sent successfully"

    except Exception as e:
        logger.error(f"Processing email failed: {str(e)}")
        return False, str(e)


def send_tracking_update_email(order):
    """Shipment picked up by a courier, with AWB and tracking link"""
    try:
        if order.expected_delivery_date:
            expected = timezone.localtime(order.expected_delivery_date).strftime('%d-%b-%Y')
        else:
            expected = "3-5 business days"
        tracking_url = settings.SHIPROCKET_TRACKING_URL.format(awb=order.awb_code)

        message = f"""
Hi {order.full_name},

Good news! Your order {order.order_id} has been shipped.

{DIVIDER}

🚚 SHIPMENT DETAILS:
Courier: {order.courier_name or '-'}
AWB / Tracking Number: {order.awb_code}
Expected Delivery: {expected}
Track: {tracking_url}

{DIVIDER}

📦 ITEMS:
{_items_details(order.items.all())}

TOTAL: ₹{order.total}

{settings.STORE_NAME}
        """.strip()

        _send(f"Your Order {order.order_id} has shipped!", message, order.email, "Tracking email", order)
        return True, "Tracking email sent successfully"

    except Exception as e:
        logger.error(f"Tracking email failed: {str(e)}")
        return False, str(e)


def send_cancellation_request_admin(order):
    """Tell the admin a customer wants to cancel"""
    try:
        message = f"""
Hello Admin,

🔄 A cancellation has been requested.

Order ID: {order.order_id}
Customer: {order.full_name} ({order.email})
Total Amount: ₹{order.total}
Order Date: {timezone.localtime(order.created_at).strftime('%d-%b-%Y')}

Reason:
"{order.cancellation_reason}"

Action Required: please review this cancellation request in the admin panel.
        """.strip()

        _send(f"Cancellation Request - Order #{order.order_id}", message, settings.ADMIN_ORDER_EMAIL,
              "Cancellation request email", order)
        return True, "Admin email sent successfully"

    except Exception as e:
        logger.error(f"Cancellation request email failed: {str(e)}")
        return False, str(e)


def send_cancellation_decision_email(order, approved, by_admin=False):
    """Cancellation approved, rejected, or performed directly by an admin"""
    try:
        if approved:
            subject = f"Order Cancelled{' by Admin' if by_admin else ''} - #{order.order_id}"
            body = (
                f"Your order {order.order_id} has been cancelled.\n\n"
                f"Reason: {order.admin_cancellation_reason}\n\n"
                f"Refund Information: if you paid online, your payment will be refunded within 5-7 business days."
            )
        else:
            subject = f"Cancellation Request Rejected - #{order.order_id}"
            body = (
                f"Your cancellation request for order {order.order_id} could not be approved.\n\n"
                f"Reason: {order.admin_cancellation_reason}\n\n"
                f"Next Steps: your order will continue to be processed as normal."
            )

        message = f"""
Hi {order.full_name},

{body}

{settings.STORE_NAME}
        """.strip()

        _send(subject, message, order.email, "Cancellation decision email", order)
        return True, "Customer email sent successfully"

    except Exception as e:
        logger.error(f"Cancellation decision email failed: {str(e)}")
        return False, str(e)
