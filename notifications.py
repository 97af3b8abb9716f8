"""Order confirmation email."""
import logging
import os
import smtplib
from email.message import EmailMessage

logger = logging.getLogger("storefront.notifications")

EMAIL_HOST = os.getenv("EMAIL_HOST")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
EMAIL_USER = os.getenv("EMAIL_USER", "")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD", "")


def render_order_confirmation(order: dict) -> EmailMessage:
    items = "\n".join(
        f"{item['name']}{' (' + item['size'] + ')' if item.get('size') else ''}"
        f" - Quantity: {item['quantity']} - ${item['price']:.2f}"
        for item in order["items"]
    )
    address = order.get("shipping_address") or {}
    created = order.get("created_at")
    order_date = created.strftime("%Y-%m-%d") if hasattr(created, "strftime") else ""

    msg = EmailMessage()
    msg["From"] = EMAIL_USER
    msg["To"] = order["customer_email"]
    msg["Subject"] = f"Order Confirmation - {order['order_number']}"
    msg.set_content(
        f"Dear {order['customer_name']},\n\n"
        "Thank you for your order!\n\n"
        f"Order Number: {order['order_number']}\n"
        f"Order Date: {order_date}\n\n"
        f"Items:\n{items}\n\n"
        f"Total: ${order['total_amount']:.2f}\n\n"
        "Shipping Address:\n"
        f"{address.get('street', '')}\n"
        f"{address.get('city', '')}, {address.get('state', '')} {address.get('zip_code', '')}\n"
        f"{address.get('country', '')}\n\n"
        "Your order is being processed and will be shipped soon.\n\n"
        "Thank you for shopping with us!\n"
    )
    return msg


def send_order_confirmation(order: dict):
    """Send the confirmation; failures are logged and never raised."""
    if not EMAIL_HOST:
        logger.info("EMAIL_HOST not set, skipping confirmation for %s", order.get("order_number"))
        return
    try:
        msg = render_order_confirmation(order)
        with smtplib.SMTP(EMAIL_HOST, EMAIL_PORT, timeout=30) as smtp:
            smtp.starttls()
            if EMAIL_USER:
                smtp.login(EMAIL_USER, EMAIL_PASSWORD)
            smtp.send_message(msg)
        logger.info("Order confirmation email sent for %s", order["order_number"])
    except (smtplib.SMTPException, OSError, KeyError) as e:
        logger.error("Error sending confirmation for %s: %s", order.get("order_number"), e)
