"""
Payment gateway integration.

Creates gateway orders before checkout and verifies the HMAC signature the
gateway hands back to the client once a payment succeeds. Nothing here
touches the database.
"""
import hashlib
import hmac
import time
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

import structlog

from errors import InvalidAmountError, PaymentGatewayError, PaymentVerificationError
from settings import settings

log = structlog.get_logger(__name__)


class PaymentGateway(ABC):
    key_id: str
    key_secret: str

    @abstractmethod
    def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        """Create a gateway order; `amount` is in minor units."""


class RazorpayGateway(PaymentGateway):
    def __init__(self, key_id: str = None, key_secret: str = None):
        import razorpay

        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self._client = razorpay.Client(auth=(self.key_id, self.key_secret))

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        return self._client.order.create(
            data={"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        )


_gateway = None


def get_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = RazorpayGateway()
    return _gateway


def to_minor_units(amount) -> int:
    """Convert a currency amount to the gateway's integer minor units (499.99 -> 49999)."""
    try:
        minor = (Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmountError(amount)
    if not minor.is_finite() or minor <= 0:
        raise InvalidAmountError(amount)
    return int(minor)


def create_payment_order(
    gateway: PaymentGateway,
    amount: float,
    currency: str = "INR",
    receipt: str = None,
    notes: dict = None,
) -> dict:
    minor_amount = to_minor_units(amount)
    options = {
        "amount": minor_amount,
        "currency": currency,
        "receipt": receipt or f"receipt_order_{int(time.time() * 1000)}",
        "notes": notes or {},
    }
    try:
        gateway_order = gateway.create_order(**options)
    except Exception as e:
        log.error("gateway_order_failed", amount=minor_amount, currency=currency, error=str(e))
        raise PaymentGatewayError(str(e)) from e
    if not gateway_order or not gateway_order.get("id"):
        log.error("gateway_order_empty", amount=minor_amount, currency=currency)
        raise PaymentGatewayError("empty response from gateway")

    log.info("gateway_order_created", razorpay_order_id=gateway_order["id"], amount=minor_amount)
    return {
        "orderId": gateway_order["id"],
        "amount": gateway_order.get("amount", minor_amount),
        "currency": gateway_order.get("currency", currency),
        "keyId": gateway.key_id,
    }


def compute_signature(secret: str, razorpay_order_id: str, razorpay_payment_id: str) -> str:
    body = f"{razorpay_order_id}|{razorpay_payment_id}"
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def verify_payment_signature(
    secret: str, razorpay_order_id: str, razorpay_payment_id: str, signature: str
) -> None:
    expected = compute_signature(secret, razorpay_order_id, razorpay_payment_id)
    if not hmac.compare_digest(expected.encode(), (signature or "").encode()):
        log.warning("signature_rejected", razorpay_order_id=razorpay_order_id)
        raise PaymentVerificationError()
