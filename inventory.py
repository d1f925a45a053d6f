"""
Stock reconciliation for persisted orders.

Product inventory is the one piece of shared mutable state several
checkouts race on. Each line item is reserved with a single conditional
update (`quantity >= requested` in the filter, `$inc` in the update), so two
concurrent checkouts for the last unit can never both succeed. The read
before it only produces an early, friendlier failure.

Reservations for one order are all-or-nothing: when a later line fails,
every line already reserved is released again before the order is flagged.
"""
from datetime import datetime, timezone

import structlog

from database import to_object_id
from errors import StockReservationError
from schemas import STOCK_FAILURE_STATUS

log = structlog.get_logger(__name__)


class StockReconciler:
    def __init__(self, db):
        self.db = db

    def _fetch_product(self, product_id: str):
        oid = to_object_id(product_id)
        if oid is None:
            return None
        return self.db["product"].find_one({"_id": oid})

    def _decrement(self, product_id: str, quantity: int) -> bool:
        res = self.db["product"].update_one(
            {"_id": to_object_id(product_id), "quantity": {"$gte": quantity}},
            {"$inc": {"quantity": -quantity, "purchase_count": quantity}},
        )
        return res.matched_count == 1

    def _release(self, product_id: str, quantity: int):
        self.db["product"].update_one(
            {"_id": to_object_id(product_id)},
            {"$inc": {"quantity": quantity, "purchase_count": -quantity}},
        )

    def _compensate(self, reserved, bind):
        for product_id, quantity in reversed(reserved):
            try:
                self._release(product_id, quantity)
            except Exception:
                # Keep releasing the rest; the order is flagged either way.
                bind.exception("stock_release_failed", product_id=product_id, quantity=quantity)
            else:
                bind.info("stock_released", product_id=product_id, quantity=quantity)

    def _flag_order(self, order_id: str, note: str):
        self.db["order"].update_one(
            {"_id": to_object_id(order_id)},
            {
                "$set": {
                    "payment_status": "failed_stock_issue",
                    "order_status": STOCK_FAILURE_STATUS,
                    "updated_at": datetime.now(timezone.utc),
                },
                "$push": {
                    "status_history": {
                        "status": STOCK_FAILURE_STATUS,
                        "timestamp": datetime.now(timezone.utc),
                        "note": note,
                    }
                },
            },
        )

    def _fail(self, order_id, reserved, product_name, insufficient, bind):
        self._compensate(reserved, bind)
        err = StockReservationError(order_id, product_name, insufficient=insufficient)
        self._flag_order(order_id, str(err))
        raise err

    def reconcile(self, order_id: str, items) -> list:
        """Reserve stock for every line of an order.

        Returns the (product_id, quantity) pairs that were decremented.
        Lines whose product no longer exists are skipped. Raises
        StockReservationError after releasing earlier reservations and
        flagging the order as failed_stock_issue, including when the
        database itself errors mid-way.
        """
        bind = log.bind(order_id=order_id)
        reserved = []
        for item in items:
            product_id, quantity = item["product_id"], item["quantity"]
            try:
                product = self._fetch_product(product_id)
            except Exception:
                bind.exception("stock_lookup_failed", product_id=product_id)
                self._fail(order_id, reserved, product_id, False, bind)
            if not product:
                bind.error("product_missing", product_id=product_id)
                continue

            name = product.get("name") or product_id
            available = product.get("quantity", 0)
            if available < quantity:
                bind.error(
                    "stock_insufficient",
                    product_id=product_id,
                    required=quantity,
                    available=available,
                )
                self._fail(order_id, reserved, name, True, bind)

            try:
                decremented = self._decrement(product_id, quantity)
            except Exception:
                bind.exception("stock_decrement_failed", product_id=product_id, required=quantity)
                self._fail(order_id, reserved, name, False, bind)
            if not decremented:
                bind.error("stock_race_lost", product_id=product_id, required=quantity)
                self._fail(order_id, reserved, name, False, bind)

            reserved.append((product_id, quantity))
            bind.info("stock_reserved", product_id=product_id, quantity=quantity)
        return reserved
