"""
Best-effort email delivery over SMTP.

Nothing in here raises on delivery problems: incomplete SMTP settings and
SMTP/network errors are logged and reported as a False return.
"""
import html
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Tuple

import config
from schemas import Order, OrderStatus, StoreSettings

logger = logging.getLogger(__name__)


def render_order_confirmation(order: Order) -> Tuple[str, str]:
    lines = "".join(
        f"<li>{html.escape(item.name)} x{item.quantity} - ${item.price * item.quantity:.2f}</li>"
        for item in order.items
    )
    body = (
        "<h1>Order Confirmed!</h1>"
        f"<p>Thank you for your order, ID: <strong>#{order.id}</strong></p>"
        "<h3>Summary:</h3>"
        f"<ul>{lines}</ul>"
        f"<p><strong>Total: ${order.total:.2f}</strong></p>"
        "<p>We will notify you when your order is shipped.</p>"
    )
    return f"Order Confirmation #{order.id}", body


def render_status_update(order: Order) -> Tuple[str, str]:
    if order.status == OrderStatus.delivered:
        subject = f"Order #{order.id} Delivered!"
    else:
        subject = f"Order #{order.id} Shipped!"
    body = (
        f"<h1>Update on Order #{order.id}</h1>"
        f'<p>Your order status is now: <strong style="text-transform:uppercase;">{order.status.value}</strong></p>'
        "<p>Track your order or view details in your account.</p>"
    )
    return subject, body


class Mailer:
    def __init__(self, port: int = None, timeout: float = None):
        self.port = port or config.SMTP_PORT
        self.timeout = timeout or config.SMTP_TIMEOUT

    def send(self, settings: StoreSettings, to: str, subject: str, body: str) -> bool:
        if not settings.smtp_configured:
            logger.warning("SMTP settings incomplete. Email to %s not sent.", to)
            return False

        try:
            msg = EmailMessage()
            msg["From"] = formataddr((settings.store_name, settings.smtp_user))
            msg["To"] = to
            msg["Subject"] = subject
            msg.set_content("This message requires an HTML capable mail client.")
            msg.add_alternative(body, subtype="html")

            with smtplib.SMTP(settings.smtp_host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                smtp.login(settings.smtp_user, settings.smtp_pass)
                smtp.send_message(msg)
        # ValueError covers bad header values and non-ASCII credentials
        except (smtplib.SMTPException, OSError, ValueError):
            logger.exception("Error sending email to %s", to)
            return False

        logger.info("Email sent to %s: %s", to, subject)
        return True

    def send_order_confirmation(self, settings: StoreSettings, order: Order) -> bool:
        subject, body = render_order_confirmation(order)
        return self.send(settings, order.customer_email, subject, body)

    def send_status_update(self, settings: StoreSettings, order: Order) -> bool:
        subject, body = render_status_update(order)
        return self.send(settings, order.customer_email, subject, body)


def get_mailer() -> Mailer:
    return Mailer()
