"""Custom exceptions for the storefront order workflow."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class InvalidAmountError(StorefrontError):
    """Raised when a payment amount does not convert to a positive minor-unit value."""

    def __init__(self, amount):
        self.amount = amount
        super().__init__("Invalid amount provided.")


class PaymentGatewayError(StorefrontError):
    """Raised when the payment gateway fails to create an order."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to create payment order: {reason}")


class PaymentVerificationError(StorefrontError):
    """Raised when the gateway signature does not match."""

    def __init__(self):
        super().__init__("Payment verification failed. Invalid signature.")


class ProductNotFoundError(StorefrontError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFoundError(StorefrontError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class PriceMismatchError(StorefrontError):
    """Raised when the client-declared total drifts from the server-computed total."""

    def __init__(self, declared: float, computed: float):
        self.declared = declared
        self.computed = computed
        super().__init__(
            f"Order total mismatch: declared {declared:.2f}, expected {computed:.2f}."
        )


class OrderPersistenceError(StorefrontError):
    """Raised when a verified order could not be stored."""

    def __init__(self, razorpay_order_id: str, reason: str):
        self.razorpay_order_id = razorpay_order_id
        super().__init__(
            f"Could not save order for payment order {razorpay_order_id}: {reason}. "
            "Please contact support."
        )


class StockReservationError(StorefrontError):
    """Raised when stock for an order line could not be reserved.

    The order row stays in the database flagged as failed_stock_issue.
    """

    def __init__(self, order_id: str, product_name: str, insufficient: bool = False):
        self.order_id = order_id
        self.product_name = product_name
        if insufficient:
            msg = f"Insufficient stock for product {product_name}."
        else:
            msg = f"Could not reserve stock for product {product_name}."
        super().__init__(f"{msg} Please contact support regarding order {order_id}.")


class CouponNotFoundError(StorefrontError):
    def __init__(self, code: str):
        self.code = code
        super().__init__("Invalid coupon code")


class CouponNotApplicableError(StorefrontError):
    """Raised when a coupon exists but cannot be applied to this cart."""

    def __init__(self, code: str, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(reason)


class MailerNotConfiguredError(StorefrontError):
    def __init__(self):
        super().__init__("Email configuration missing. Set BREVO_API_KEY and EMAIL_SENDER.")


class EmailDeliveryError(StorefrontError):
    def __init__(self, recipient: str, reason: str):
        self.recipient = recipient
        super().__init__(f"Email to {recipient} failed: {reason}")


ERROR_STATUS_CODES: dict = {
    InvalidAmountError: 400,
    PaymentVerificationError: 400,
    PriceMismatchError: 400,
    CouponNotApplicableError: 400,
    ProductNotFoundError: 404,
    OrderNotFoundError: 404,
    CouponNotFoundError: 404,
    PaymentGatewayError: 500,
    OrderPersistenceError: 500,
    StockReservationError: 500,
}
