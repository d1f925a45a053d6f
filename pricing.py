"""
Server-side pricing for verified checkouts.

Unit prices and names are taken from the catalog at verification time; the
client's declared total is only compared against the computed one.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import structlog

from database import to_object_id
from errors import CouponNotApplicableError, CouponNotFoundError, PriceMismatchError, ProductNotFoundError
from schemas import OrderItem
from settings import settings

log = structlog.get_logger(__name__)


@dataclass
class Quote:
    items: List[OrderItem]
    subtotal: float
    total: float
    coupon_code: Optional[str] = None
    coupon_discount: float = 0.0


def unit_price(product: dict) -> float:
    price = float(product.get("price") or 0)
    discount = float(product.get("discount") or 0)
    return round(max(price - discount, 0.0), 2)


def price_items(db, lines) -> List[OrderItem]:
    """Resolve (product_id, quantity) lines against the catalog."""
    items = []
    for line in lines:
        oid = to_object_id(line.product_id)
        product = db["product"].find_one({"_id": oid}) if oid else None
        if not product:
            raise ProductNotFoundError(line.product_id)
        items.append(
            OrderItem(
                product_id=str(product["_id"]),
                quantity=line.quantity,
                price_at_purchase=unit_price(product),
                name_at_purchase=product.get("name") or "",
            )
        )
    return items


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def coupon_rejection(coupon: dict, subtotal: float, now: datetime = None) -> Optional[str]:
    """Return why `coupon` cannot be applied to `subtotal`, or None."""
    now = now or datetime.now(timezone.utc)
    if not coupon.get("is_active", True):
        return "Coupon is not active"
    valid_from = coupon.get("valid_from")
    valid_until = coupon.get("valid_until")
    if valid_from and _as_utc(valid_from) > now:
        return "Coupon is not valid yet"
    if valid_until and _as_utc(valid_until) < now:
        return "Coupon has expired or reached usage limit"
    limit = coupon.get("usage_limit")
    if limit is not None and coupon.get("times_used", 0) >= limit:
        return "Coupon has expired or reached usage limit"
    minimum = float(coupon.get("min_purchase_amount") or 0)
    if subtotal < minimum:
        return f"Minimum purchase amount of Rs. {minimum:g} required"
    return None


def coupon_is_usable(coupon: dict, subtotal: float, now: datetime = None) -> bool:
    return coupon_rejection(coupon, subtotal, now) is None


def coupon_discount(coupon: dict, subtotal: float) -> float:
    if coupon["discount_type"] == "percentage":
        discount = subtotal * float(coupon["discount_value"]) / 100
    else:
        discount = float(coupon["discount_value"])
    return round(min(discount, subtotal), 2)


def validate_coupon(db, code: str, subtotal: float, now: datetime = None):
    """Look up `code` and return (coupon, discount) for `subtotal`.

    Raises CouponNotFoundError or CouponNotApplicableError.
    """
    coupon = db["coupon"].find_one({"code": (code or "").strip().upper()})
    if not coupon:
        raise CouponNotFoundError(code)
    reason = coupon_rejection(coupon, subtotal, now)
    if reason:
        raise CouponNotApplicableError(coupon["code"], reason)
    return coupon, coupon_discount(coupon, subtotal)


def resolve_coupon(db, code: Optional[str], subtotal: float, declared_discount: float, bind=None):
    """Return (coupon_code, discount) the order is entitled to.

    A coupon that is unknown, unusable, or whose declared discount disagrees
    with the computed one is dropped rather than failing the checkout.
    """
    bind = bind or log
    if not code:
        return None, 0.0
    try:
        coupon, discount = validate_coupon(db, code, subtotal)
    except CouponNotFoundError:
        bind.warning("coupon_not_found", coupon=code)
        return None, 0.0
    except CouponNotApplicableError as e:
        bind.warning("coupon_unusable", coupon=e.code, subtotal=subtotal, reason=e.reason)
        return None, 0.0

    if abs(discount - float(declared_discount or 0)) > settings.PRICE_TOLERANCE:
        bind.error(
            "coupon_discount_mismatch",
            coupon=coupon["code"],
            declared=declared_discount,
            computed=discount,
            subtotal=subtotal,
        )
        return None, 0.0
    return coupon["code"], discount


def quote_order(db, lines, declared_total: float, coupon_code: str = None,
                declared_discount: float = 0, bind=None) -> Quote:
    items = price_items(db, lines)
    subtotal = round(sum(i.price_at_purchase * i.quantity for i in items), 2)
    code, discount = resolve_coupon(db, coupon_code, subtotal, declared_discount, bind=bind)
    total = round(subtotal - discount, 2)
    if abs(total - float(declared_total)) > settings.PRICE_TOLERANCE:
        raise PriceMismatchError(float(declared_total), total)
    return Quote(items=items, subtotal=subtotal, total=total, coupon_code=code, coupon_discount=discount)
