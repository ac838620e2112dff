"""
Transactional email

Mailer does the SMTP delivery; Notifier renders the order and password
templates and hands delivery to a scheduler (FastAPI BackgroundTasks in the
API). Sending is best effort: failures are logged and never reach the
caller of the operation that triggered them.
"""
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from html import escape
from typing import Callable, List, Optional

import structlog

from config import Settings

logger = structlog.get_logger(__name__)


class Mailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to_address: str, to_name: str, subject: str, html_body: str, attachments: Optional[List[dict]] = None):
        s = self.settings
        if not s.smtp_host:
            logger.info("email_skipped", reason="smtp not configured", to=to_address, subject=subject)
            return

        msg = EmailMessage()
        msg["From"] = formataddr((s.mail_from_name, s.smtp_user or ""))
        msg["To"] = formataddr((to_name, to_address))
        msg["Subject"] = subject
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html_body, subtype="html")
        for attachment in attachments or []:
            maintype, _, subtype = attachment.get("content_type", "application/octet-stream").partition("/")
            msg.add_attachment(
                attachment["content"],
                maintype=maintype,
                subtype=subtype,
                filename=attachment["filename"],
            )

        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=30) as smtp:
            smtp.starttls()
            if s.smtp_user:
                smtp.login(s.smtp_user, s.smtp_password or "")
            smtp.send_message(msg)
        logger.info("email_sent", to=to_address, subject=subject)


def _money(value) -> str:
    return f"${float(value):.2f}"


def _order_table(order: dict) -> str:
    rows = "\n".join(
        f"<tr><td>{escape(item['name'])}</td>"
        f"<td align=\"center\">{item['quantity']}</td>"
        f"<td align=\"right\">{_money(item['price'])}</td></tr>"
        for item in order["order_items"]
    )
    address = order["shipping_address"]
    created = order.get("created_at")
    created_day = created.date().isoformat() if created else ""
    return f"""<h2>[Order {order['_id']}] ({created_day})</h2>
<table>
<thead><tr><td><strong>Product</strong></td><td><strong>Quantity</strong></td><td align="right"><strong>Price</strong></td></tr></thead>
<tbody>
{rows}
</tbody>
<tfoot>
<tr><td colspan="2">Items Price:</td><td align="right">{_money(order['items_price'])}</td></tr>
<tr><td colspan="2">Shipping Price:</td><td align="right">{_money(order['shipping_price'])}</td></tr>
<tr><td colspan="2">Tax Price:</td><td align="right">{_money(order['tax_price'])}</td></tr>
<tr><td colspan="2"><strong>Total Price:</strong></td><td align="right"><strong>{_money(order['total_price'])}</strong></td></tr>
<tr><td colspan="2">Payment Method:</td><td align="right">{escape(order['payment_method'])}</td></tr>
</tfoot>
</table>
<h2>Shipping address</h2>
<p>
{escape(address['full_name'])},<br/>
{escape(address['address'])},<br/>
{escape(address['city'])},<br/>
{escape(address['country'])},<br/>
{escape(address['postal_code'])}<br/>
</p>"""


def pay_order_email_template(order: dict, user_name: str) -> str:
    return f"""<h1>Thanks for shopping with us!</h1>
<p>Hi {escape(user_name)},</p>
<p>We have finished processing your order.</p>
{_order_table(order)}
<hr/>
<p>Thank you for shopping with us.</p>"""


def deliver_order_email_template(order: dict, user_name: str) -> str:
    return f"""<h1>Your order has been completed and is on its way!</h1>
<p>Hi {escape(user_name)},</p>
<p>We are glad to let you know that your order is on its way to you.</p>
{_order_table(order)}
<hr/>
<p>Thank you for choosing our store. We hope you enjoy your products!</p>"""


def reset_password_email_template(link: str) -> str:
    return f"""<p>Please click the following link to reset your password:</p>
<a href="{escape(link)}">Reset Password</a>"""


TEMPLATES = {
    "payment": ("Order Paid - Order {order_id}", pay_order_email_template),
    "delivery": ("Order Delivered - Order {order_id}", deliver_order_email_template),
}


class Notifier:
    """Fire-and-forget email dispatch.

    `schedule(fn, *args)` decides when delivery happens; by default it runs
    right away, the API passes BackgroundTasks.add_task so the response is
    not held up by SMTP.
    """

    def __init__(self, mailer: Mailer, schedule: Optional[Callable] = None):
        self.mailer = mailer
        self.schedule = schedule or (lambda fn, *args: fn(*args))

    def _deliver(self, to_address, to_name, subject, html_body, attachments=None):
        try:
            self.mailer.send(to_address, to_name, subject, html_body, attachments)
        except Exception as exc:
            logger.error("email_failed", to=to_address, subject=subject, error=str(exc))

    def send(self, to_address: str, to_name: str, subject: str, html_body: str, attachments: Optional[List[dict]] = None):
        try:
            self.schedule(self._deliver, to_address, to_name, subject, html_body, attachments)
        except Exception as exc:
            logger.error("email_schedule_failed", to=to_address, subject=subject, error=str(exc))

    def order_email(self, order: dict, user: Optional[dict], template: str):
        if not user or not user.get("email"):
            logger.warning("email_no_recipient", order_id=str(order.get("_id")), template=template)
            return
        subject, render = TEMPLATES[template]
        try:
            html_body = render(order, user.get("name", ""))
        except Exception as exc:
            logger.error("email_render_failed", order_id=str(order.get("_id")), template=template, error=str(exc))
            return
        self.send(user["email"], user.get("name", ""), subject.format(order_id=order["_id"]), html_body)

    def reset_password_email(self, user: dict, link: str):
        self.send(user["email"], user.get("name", ""), "Reset Password", reset_password_email_template(link))
