"""Tests for order confirmation emails."""

import base64

import pytest
import requests

from errors import EmailDeliveryError, MailerNotConfiguredError
from notifications import Attachment, BrevoMailer, OrderNotifier, render_order_email

from conftest import FakeMailer


def order(**overrides):
    doc = {
        "id": "65f0c0ffee0000000000abcd",
        "created_at": "2026-10-01T09:30:00+00:00",
        "razorpay_order_id": "order_1",
        "razorpay_payment_id": "pay_1",
        "items": [{"product_id": "p1", "quantity": 2, "price_at_purchase": 450.0, "name_at_purchase": "Tote <Large>"}],
        "subtotal": 900.0,
        "total_amount": 900.0,
        "coupon_discount_amount": 0,
        "applied_coupon_code": None,
        "shipping_address": {"street": "1 MG Road", "city": "Pune", "postal_code": "411001", "country": "India"},
    }
    doc.update(overrides)
    return doc


USER = {"id": "u1", "name": "Buyer", "email": "buyer@example.com"}


class TestRenderOrderEmail:
    def test_subject_carries_order_number(self):
        subject, _ = render_order_email(order())
        assert subject.endswith("#0000ABCD")

    def test_item_rows_and_total(self):
        _, html = render_order_email(order())
        assert "Tote &lt;Large&gt;" in html
        assert "&#8377;900.00" in html
        assert "411001" in html

    def test_coupon_section_only_with_discount(self):
        _, plain = render_order_email(order())
        _, discounted = render_order_email(order(coupon_discount_amount=100, applied_coupon_code="FLAT100"))
        assert "COUPON" not in plain
        assert "COUPON: FLAT100" in discounted


class TestOrderNotifier:
    def test_sends_invoice_attachment(self):
        mailer = FakeMailer()
        assert OrderNotifier(mailer).send_order_confirmation(order(), USER) is True
        sent = mailer.sent[0]
        assert sent["to"] == "buyer@example.com"
        assert sent["attachments"][0].filename == "scatch-invoice-0000ABCD.pdf"
        assert sent["attachments"][0].content.startswith(b"%PDF")

    def test_delivery_failure_is_reported_not_raised(self):
        mailer = FakeMailer()
        mailer.fail = True
        assert OrderNotifier(mailer).send_order_confirmation(order(), USER) is False


class FakeResponse:
    def __init__(self, status_code=201, payload=None):
        self.status_code = status_code
        self._payload = payload or {"messageId": "<abc@brevo>"}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class TestBrevoMailer:
    def test_missing_api_key(self):
        with pytest.raises(MailerNotConfiguredError):
            BrevoMailer(api_key="", sender="orders@example.com").send("a@b.c", "s", "<p>x</p>")

    def test_posts_payload_with_base64_attachment(self, monkeypatch):
        calls = []

        def fake_post(url, json, headers, timeout):
            calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
            return FakeResponse()

        monkeypatch.setattr(requests, "post", fake_post)
        mailer = BrevoMailer(api_key="key-123", sender="orders@example.com", timeout=5)
        message_id = mailer.send("a@b.c", "Hi", "<p>x</p>", [Attachment("inv.pdf", b"%PDF-1.4")])

        assert message_id == "<abc@brevo>"
        call = calls[0]
        assert call["headers"]["api-key"] == "key-123"
        assert call["timeout"] == 5
        assert call["json"]["to"] == [{"email": "a@b.c"}]
        assert call["json"]["attachment"] == [
            {"name": "inv.pdf", "content": base64.b64encode(b"%PDF-1.4").decode()}
        ]

    def test_http_error_becomes_delivery_error(self, monkeypatch):
        monkeypatch.setattr(requests, "post", lambda *a, **kw: FakeResponse(status_code=502))
        mailer = BrevoMailer(api_key="key-123", sender="orders@example.com")
        with pytest.raises(EmailDeliveryError):
            mailer.send("a@b.c", "Hi", "<p>x</p>")
