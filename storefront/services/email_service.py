"""
Email service for order notifications.
Uses Flask-Mail for SMTP integration with UTF-8 support.

Every sender returns a bool and never raises: a notification failure must not
undo or fail the order operation that triggered it.
"""
import logging
from flask import current_app
from flask_mail import Mail, Message

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Prevents 500 errors in dev or misconfigured environments.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def _store_name() -> str:
    return current_app.config.get('STORE_NAME', 'Arcane')


def _orders_url() -> str:
    return f"{current_app.config.get('FRONTEND_URL', '').rstrip('/')}/account/orders"


def send_email(to: str, subject: str, html: str, text: str | None = None) -> bool:
    """
    Send a single email.

    Args:
        to: Recipient email
        subject: Email subject
        html: HTML body
        text: Plain text body (optional)

    Returns:
        True if sent (or mail disabled), False on failure
    """
    if not to:
        logger.info(f"[EMAIL] No recipient for '{subject}', skipped")
        return False

    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Email '{subject}' skipped for {to}")
            return True

        msg = Message(subject=subject, recipients=[to], body=text, html=html)
        mail.send(msg)
        logger.info(f"[EMAIL] ✓ Email '{subject}' sent to {to}")
        return True

    except Exception as e:
        logger.exception(f"[EMAIL] ✗ Failed to send email to {to}: {str(e)}")
        return False


def send_order_confirmation_email(order) -> bool:
    """Card payment confirmed."""
    store = _store_name()
    html = f"""
        <h2>Order Confirmed!</h2>
        <p>Thank you for your purchase from {store}.</p>
        <p><strong>Order ID:</strong> {order.id}</p>
        <p><strong>Total Paid:</strong> ${order.total_price:.2f}</p>
        <p>We'll notify you when your items are shipped.</p>
    """
    return send_email(order.notification_email, f"{store} - Order Confirmation", html)


def send_cod_confirmation_email(order) -> bool:
    """Cash on delivery order placed."""
    store = _store_name()
    html = f"""
        <h2>Your Order Has Been Placed! (Cash on Delivery)</h2>
        <p>Thank you for your purchase from {store}.</p>
        <p><strong>Order ID:</strong> {order.id}</p>
        <p><strong>Total to Pay:</strong> ${order.total_price:.2f}</p>
        <p>Please have the exact amount ready upon delivery.</p>
    """
    return send_email(order.notification_email, f"{store} - COD Order Confirmation", html)


def send_order_status_email(order, is_paid=None, is_delivered=None) -> bool:
    """
    Tell the customer about a status change.

    Delivered wins over paid; a paid-only change is announced as "in transit".
    Other changes (e.g. flags cleared) send nothing.
    """
    store = _store_name()
    name = order.user.display_name if order.user is not None else 'Customer'
    reference = order.short_reference

    if is_delivered is True:
        subject = f"{store} - Your Order Has Been Delivered! 📦"
        html = f"""
            <h2>Your order has been delivered, {name}!</h2>
            <p><strong>Order ID:</strong> #{reference}</p>
            <p><strong>Total Paid:</strong> ${order.total_price:.2f}</p>
            <p>We hope you enjoy your purchase! Please leave a review on our website.</p>
            <p><a href="{_orders_url()}">View Order</a></p>
        """
    elif is_paid is True:
        subject = f"{store} - Your Order Is Now In Transit 🚚"
        html = f"""
            <h2>Great news, {name}! Your order is on its way.</h2>
            <p><strong>Order ID:</strong> #{reference}</p>
            <p><strong>Total:</strong> ${order.total_price:.2f}</p>
            <p>Your order has been confirmed and is now in transit. We'll notify you when it's delivered.</p>
            <p><a href="{_orders_url()}">Track Order</a></p>
        """
    else:
        return False

    return send_email(order.notification_email, subject, html)
