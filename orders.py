"""
Order placement and order queries.

`place_order` runs the whole post-payment workflow inside the
verify-payment request:

    verify signature -> price -> persist -> reserve stock -> count coupon use
        -> notify -> clear cart

Nothing is written before the signature checks out. A failure while
persisting leaves the payment without an order; a stock failure leaves the
order flagged as failed_stock_issue. Email delivery never fails the request.
"""
from datetime import datetime, timedelta, timezone

import structlog

from database import serialize_doc, to_object_id
from errors import OrderNotFoundError, OrderPersistenceError
from inventory import StockReconciler
from payments import verify_payment_signature
from pricing import quote_order
from schemas import Order, ShippingAddress, StatusEntry
from settings import settings

log = structlog.get_logger(__name__)


def build_order(user_id: str, payment: dict, quote, shipping_address: dict = None, now: datetime = None) -> Order:
    now = now or datetime.now(timezone.utc)
    return Order(
        user_id=user_id,
        items=quote.items,
        subtotal=quote.subtotal,
        total_amount=quote.total,
        applied_coupon_code=quote.coupon_code,
        coupon_discount_amount=quote.coupon_discount,
        shipping_address=ShippingAddress(**(shipping_address or {})),
        razorpay_order_id=payment["razorpay_order_id"],
        razorpay_payment_id=payment["razorpay_payment_id"],
        razorpay_signature=payment["razorpay_signature"],
        payment_status="paid",
        order_status="Processing",
        status_history=[StatusEntry(status="Processing", timestamp=now, note="Order placed successfully")],
        estimated_delivery_date=now + timedelta(days=settings.DELIVERY_DAYS),
        created_at=now,
    )


def persist_order(db, order: Order) -> dict:
    doc = order.model_dump()
    doc["updated_at"] = doc["created_at"]
    try:
        result = db["order"].insert_one(doc)
    except Exception as e:
        log.exception("order_persist_failed", razorpay_order_id=order.razorpay_order_id)
        raise OrderPersistenceError(order.razorpay_order_id, str(e)) from e
    doc["_id"] = result.inserted_id
    return serialize_doc(doc)


def increment_coupon_usage(db, code: str, bind=None):
    bind = bind or log
    try:
        db["coupon"].update_one({"code": code}, {"$inc": {"times_used": 1}})
    except Exception:
        bind.exception("coupon_usage_increment_failed", coupon=code)


def clear_cart(db, user_id: str, bind=None) -> bool:
    bind = bind or log
    res = db["user"].update_one({"_id": to_object_id(user_id)}, {"$set": {"cart": []}})
    if res.matched_count == 0:
        bind.error("cart_clear_user_missing", user_id=user_id)
        return False
    bind.info("cart_cleared", user_id=user_id)
    return True


def place_order(db, notifier, user: dict, body, secret: str) -> dict:
    verify_payment_signature(
        secret, body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature
    )
    bind = log.bind(razorpay_order_id=body.razorpay_order_id, user_id=user["id"])

    quote = quote_order(
        db,
        body.items,
        body.total_amount,
        coupon_code=body.applied_coupon_code,
        declared_discount=body.coupon_discount,
        bind=bind,
    )
    order = build_order(
        user["id"],
        {
            "razorpay_order_id": body.razorpay_order_id,
            "razorpay_payment_id": body.razorpay_payment_id,
            "razorpay_signature": body.razorpay_signature,
        },
        quote,
        body.shipping_address.model_dump() if body.shipping_address else None,
    )
    saved = persist_order(db, order)
    bind = bind.bind(order_id=saved["id"])
    bind.info("order_persisted", total=saved["total_amount"])

    StockReconciler(db).reconcile(saved["id"], saved["items"])

    # Only orders that kept their stock consume a coupon use
    if saved["applied_coupon_code"]:
        increment_coupon_usage(db, saved["applied_coupon_code"], bind)

    notifier.send_order_confirmation(saved, user)
    clear_cart(db, user["id"], bind)
    return saved


def _product_summaries(db, orders):
    ids = {to_object_id(i["product_id"]) for o in orders for i in o.get("items", [])}
    ids.discard(None)
    if not ids:
        return {}
    products = db["product"].find({"_id": {"$in": list(ids)}}, {"name": 1, "image": 1, "price": 1})
    return {
        str(p["_id"]): {"id": str(p["_id"]), "name": p.get("name"), "image": p.get("image"), "price": p.get("price")}
        for p in products
    }


def list_user_orders(db, user_id: str):
    orders = [serialize_doc(o) for o in db["order"].find({"user_id": user_id}).sort("created_at", -1)]
    products = _product_summaries(db, orders)
    for order in orders:
        for item in order.get("items", []):
            item["product"] = products.get(item["product_id"])
    return orders


def has_purchased(db, user_id: str, product_id: str) -> bool:
    query = {"user_id": user_id, "items.product_id": product_id, "payment_status": "paid"}
    return db["order"].find_one(query) is not None


def list_all_orders(db):
    orders = [serialize_doc(o) for o in db["order"].find().sort("created_at", -1)]
    user_ids = {to_object_id(o["user_id"]) for o in orders}
    user_ids.discard(None)
    users = {
        str(u["_id"]): {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email")}
        for u in db["user"].find({"_id": {"$in": list(user_ids)}})
    }
    products = _product_summaries(db, orders)
    for order in orders:
        order["user"] = users.get(order["user_id"])
        for item in order.get("items", []):
            item["product"] = products.get(item["product_id"])
    return orders


def update_order_status(db, order_id: str, status: str, tracking_number: str = None, note: str = None) -> dict:
    now = datetime.now(timezone.utc)
    update = {
        "$set": {"order_status": status, "updated_at": now},
        "$push": {
            "status_history": {
                "status": status,
                "timestamp": now,
                "note": note or f"Order status updated to {status}",
            }
        },
    }
    if tracking_number:
        update["$set"]["tracking_number"] = tracking_number
    oid = to_object_id(order_id)
    res = db["order"].update_one({"_id": oid}, update) if oid else None
    if res is None or res.matched_count == 0:
        raise OrderNotFoundError(order_id)
    return serialize_doc(db["order"].find_one({"_id": oid}))
