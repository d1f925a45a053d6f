"""Tests for gateway order creation and signature verification."""

import pytest

from errors import InvalidAmountError, PaymentGatewayError, PaymentVerificationError
from payments import compute_signature, create_payment_order, to_minor_units, verify_payment_signature

from conftest import FakeGateway


class TestMinorUnits:
    def test_rounds_to_nearest_minor_unit(self):
        assert to_minor_units(499.99) == 49999

    def test_whole_amount(self):
        assert to_minor_units(10) == 1000

    def test_half_rounds_up(self):
        assert to_minor_units(0.005) == 1

    @pytest.mark.parametrize("amount", [0, -5, 0.004])
    def test_non_positive_rejected(self, amount):
        with pytest.raises(InvalidAmountError):
            to_minor_units(amount)

    @pytest.mark.parametrize("amount", [float("inf"), float("nan"), "abc"])
    def test_non_numeric_rejected(self, amount):
        with pytest.raises(InvalidAmountError):
            to_minor_units(amount)


class TestCreatePaymentOrder:
    def test_returns_public_fields_only(self):
        gateway = FakeGateway()
        result = create_payment_order(gateway, 499.99, "INR", "rcpt-1", {"cart": "3 items"})

        assert result == {
            "orderId": "order_1",
            "amount": 49999,
            "currency": "INR",
            "keyId": "rzp_test_public",
        }
        assert gateway.key_secret not in result.values()
        assert gateway.calls[0]["receipt"] == "rcpt-1"
        assert gateway.calls[0]["notes"] == {"cart": "3 items"}

    def test_default_receipt_and_notes(self):
        gateway = FakeGateway()
        create_payment_order(gateway, 10)
        call = gateway.calls[0]
        assert call["receipt"].startswith("receipt_order_")
        assert call["notes"] == {}
        assert call["currency"] == "INR"

    def test_gateway_failure(self):
        gateway = FakeGateway()
        gateway.fail = True
        with pytest.raises(PaymentGatewayError):
            create_payment_order(gateway, 10)

    def test_invalid_amount_never_reaches_gateway(self):
        gateway = FakeGateway()
        with pytest.raises(InvalidAmountError):
            create_payment_order(gateway, 0)
        assert gateway.calls == []


class TestSignature:
    def test_known_vector(self):
        import hashlib
        import hmac

        expected = hmac.new(b"s3cret", b"order_A|pay_B", hashlib.sha256).hexdigest()
        assert compute_signature("s3cret", "order_A", "pay_B") == expected

    def test_valid_signature_passes(self):
        sig = compute_signature("s3cret", "order_A", "pay_B")
        verify_payment_signature("s3cret", "order_A", "pay_B", sig)

    def test_every_single_character_mutation_fails(self):
        sig = compute_signature("s3cret", "order_A", "pay_B")
        for i, ch in enumerate(sig):
            replacement = "0" if ch != "0" else "1"
            mutated = sig[:i] + replacement + sig[i + 1:]
            with pytest.raises(PaymentVerificationError):
                verify_payment_signature("s3cret", "order_A", "pay_B", mutated)

    def test_wrong_secret_fails(self):
        sig = compute_signature("other", "order_A", "pay_B")
        with pytest.raises(PaymentVerificationError):
            verify_payment_signature("s3cret", "order_A", "pay_B", sig)

    def test_swapped_ids_fail(self):
        sig = compute_signature("s3cret", "order_A", "pay_B")
        with pytest.raises(PaymentVerificationError):
            verify_payment_signature("s3cret", "pay_B", "order_A", sig)

    def test_empty_signature_fails(self):
        with pytest.raises(PaymentVerificationError):
            verify_payment_signature("s3cret", "order_A", "pay_B", "")
