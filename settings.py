"""
Runtime configuration and logging setup.

Values come from environment variables and are read once at import time.
"""
import logging
import os

import structlog


class Settings:
    DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "storefront")

    JWT_SECRET: str = os.getenv("JWT_SECRET", "devsecret")
    JWT_EXPIRE_DAYS: int = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

    RAZORPAY_KEY_ID: str = os.getenv("RAZORPAY_KEY_ID", "rzp_test_key")
    RAZORPAY_KEY_SECRET: str = os.getenv("RAZORPAY_KEY_SECRET", "rzp_test_secret")

    BREVO_API_KEY: str = os.getenv("BREVO_API_KEY", "")
    BREVO_API_URL: str = os.getenv("BREVO_API_URL", "https://api.brevo.com/v3/smtp/email")
    EMAIL_SENDER: str = os.getenv("EMAIL_SENDER", "orders@scatch.shop")
    EMAIL_TIMEOUT_SECONDS: float = float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))

    STORE_NAME: str = os.getenv("STORE_NAME", "Scatch")
    SUPPORT_EMAIL: str = os.getenv("SUPPORT_EMAIL", "support@scatch.shop")
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # Allowed drift between client-declared and server-computed money amounts
    PRICE_TOLERANCE: float = float(os.getenv("PRICE_TOLERANCE", "0.01"))
    DELIVERY_DAYS: int = int(os.getenv("DELIVERY_DAYS", "7"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    PORT: int = int(os.getenv("PORT", "8000"))


settings = Settings()


def configure_logging(level: str = None):
    level_name = (level or settings.LOG_LEVEL).upper()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level_name, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
