"""
Post-purchase notifications.

Sends the order confirmation email with the invoice attached. Delivery is
best-effort: failures are logged and never propagate into the checkout.
"""
import base64
from abc import ABC, abstractmethod
from html import escape
from typing import List

import requests
import structlog

from errors import EmailDeliveryError, MailerNotConfiguredError
from invoice import invoice_number, render_invoice
from settings import settings

log = structlog.get_logger(__name__)


class Attachment:
    def __init__(self, filename: str, content: bytes):
        self.filename = filename
        self.content = content


class Mailer(ABC):
    @abstractmethod
    def send(self, to: str, subject: str, html: str, attachments: List[Attachment] = None) -> str:
        """Deliver one message and return the provider's message id."""


class BrevoMailer(Mailer):
    """Transactional email over the Brevo HTTP API."""

    def __init__(self, api_key: str = None, sender: str = None, timeout: float = None):
        self.api_key = api_key if api_key is not None else settings.BREVO_API_KEY
        self.sender = sender or settings.EMAIL_SENDER
        self.timeout = timeout or settings.EMAIL_TIMEOUT_SECONDS

    def send(self, to: str, subject: str, html: str, attachments: List[Attachment] = None) -> str:
        if not self.api_key or not self.sender:
            raise MailerNotConfiguredError()
        payload = {
            "sender": {"email": self.sender, "name": settings.STORE_NAME},
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html,
        }
        if attachments:
            payload["attachment"] = [
                {"name": a.filename, "content": base64.b64encode(a.content).decode()}
                for a in attachments
            ]
        try:
            response = requests.post(
                settings.BREVO_API_URL,
                json=payload,
                headers={"api-key": self.api_key, "Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise EmailDeliveryError(to, str(e)) from e
        return response.json().get("messageId", "")


_mailer = None


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = BrevoMailer()
    return _mailer


def _rupees(value) -> str:
    return f"&#8377;{float(value):,.2f}"


def render_order_email(order: dict) -> tuple:
    """Return (subject, html) for an order confirmation."""
    number = invoice_number(order)
    rows = "".join(
        "<tr>"
        f"<td style=\"padding:12px;font-weight:600\">{escape(item['name_at_purchase'])}</td>"
        f"<td style=\"padding:12px;text-align:center\">{item['quantity']}</td>"
        f"<td style=\"padding:12px;text-align:right\">{_rupees(item['price_at_purchase'])}</td>"
        f"<td style=\"padding:12px;text-align:right;font-weight:700\">"
        f"{_rupees(item['price_at_purchase'] * item['quantity'])}</td>"
        "</tr>"
        for item in order.get("items", [])
    )

    coupon = ""
    if float(order.get("coupon_discount_amount") or 0) > 0:
        coupon = (
            "<div style=\"background:#000;color:#fff;padding:15px;margin:20px 0;text-align:center\">"
            f"<h3 style=\"margin:0\">Saved {_rupees(order['coupon_discount_amount'])}</h3>"
            f"<p style=\"margin:5px 0 0 0;font-size:12px\">COUPON: {escape(order.get('applied_coupon_code') or '')}</p>"
            "</div>"
        )

    address = order.get("shipping_address") or {}
    shipping = "<br>".join(
        escape(part)
        for part in [
            address.get("street") or "",
            f"{address.get('city') or ''}, {address.get('postal_code') or ''}",
            address.get("country") or "",
        ]
    )

    store = escape(settings.STORE_NAME)
    subject = f"Order Confirmed - Your {settings.STORE_NAME} Purchase #{number}"
    html = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Order Confirmation</title></head>
<body style="font-family:'Courier New',Courier,monospace;background:#f0f0f0;margin:0;padding:0">
  <div style="max-width:600px;margin:40px auto;background:#fff;border:4px solid #000">
    <div style="background:#000;padding:30px 20px;text-align:center">
      <h1 style="color:#fff;margin:0;text-transform:uppercase">{store}</h1>
      <p style="color:#fff;margin:5px 0 0 0;font-size:12px">ORDER CONFIRMATION</p>
    </div>
    <div style="padding:40px 30px">
      <h2 style="text-align:center;text-transform:uppercase">Thanks for your order!</h2>
      <p style="text-align:center">Order <strong>#{number}</strong> has been confirmed.</p>
      {coupon}
      <table style="width:100%;border-collapse:collapse;border:2px solid #000">
        <thead><tr style="background:#000;color:#fff">
          <th style="padding:12px;text-align:left">Item</th>
          <th style="padding:12px">Qty</th>
          <th style="padding:12px;text-align:right">Price</th>
          <th style="padding:12px;text-align:right">Total</th>
        </tr></thead>
        <tbody>{rows}</tbody>
      </table>
      <div style="background:#ffe600;border:4px solid #000;padding:20px;text-align:center;margin:30px 0">
        <div style="font-weight:900">TOTAL AMOUNT</div>
        <div style="font-size:32px;font-weight:900">{_rupees(order.get('total_amount', 0))}</div>
      </div>
      <div style="border:2px solid #000;padding:20px;background:#f9f9f9">
        <h3 style="margin:0 0 10px 0;font-size:14px">SHIPPING TO:</h3>
        <div>{shipping}</div>
      </div>
    </div>
    <div style="border-top:4px solid #000;background:#f0f0f0;padding:20px;text-align:center;font-size:12px">
      INVOICE ATTACHED
    </div>
  </div>
</body>
</html>"""
    return subject, html


class OrderNotifier:
    def __init__(self, mailer: Mailer):
        self.mailer = mailer

    def send_order_confirmation(self, order: dict, user: dict) -> bool:
        """Email the invoice for a reconciled order. Returns False when delivery failed."""
        bind = log.bind(order_id=order.get("id"), recipient=user.get("email"))
        try:
            pdf = render_invoice(order, user.get("name") or "", user.get("email") or "")
            subject, html = render_order_email(order)
            attachment = Attachment(
                f"{settings.STORE_NAME.lower()}-invoice-{invoice_number(order)}.pdf", pdf
            )
            message_id = self.mailer.send(user["email"], subject, html, [attachment])
        except Exception:
            bind.exception("order_email_failed")
            return False
        bind.info("order_email_sent", message_id=message_id)
        return True
