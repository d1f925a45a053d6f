"""Tests for the coupon endpoints."""

from datetime import datetime, timedelta, timezone

from bson.objectid import ObjectId

from test_orders_api import insert_coupon, verify_body


def coupon_body(**overrides):
    now = datetime.now(timezone.utc)
    body = {
        "code": "summer20",
        "discount_type": "percentage",
        "discount_value": 20,
        "description": "20% off",
        "valid_from": (now - timedelta(days=1)).isoformat(),
        "valid_until": (now + timedelta(days=30)).isoformat(),
        "min_purchase_amount": 500,
    }
    body.update(overrides)
    return body


class TestValidate:
    def test_returns_server_computed_discount(self, client, db, make_user, make_product):
        insert_coupon(db, code="SAVE10", discount_type="percentage", discount_value=10)
        pid = make_product(price=1000, quantity=5)
        _, headers = make_user()

        response = client.post("/coupons/validate", headers=headers, json={
            "code": "save10",
            "items": [{"productId": pid, "quantity": 2, "priceAtPurchase": 1}],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["coupon"]["code"] == "SAVE10"
        assert data["coupon"]["applicableAmount"] == 2000
        assert data["coupon"]["discount"] == 200
        assert data["finalTotal"] == 1800

    def test_validated_discount_is_accepted_at_checkout(self, client, db, make_user, make_product):
        insert_coupon(db)
        pid = make_product(price=1000, quantity=5)
        _, headers = make_user()

        quote = client.post("/coupons/validate", headers=headers, json={
            "code": "FLAT100", "items": [{"productId": pid, "quantity": 1}],
        }).json()
        response = client.post("/orders/verify-payment", headers=headers, json=verify_body(
            pid, 1, total=quote["finalTotal"],
            appliedCouponCode="FLAT100", couponDiscount=quote["coupon"]["discount"],
        ))

        assert response.status_code == 200
        assert response.json()["order"]["applied_coupon_code"] == "FLAT100"
        assert db["coupon"].find_one({"code": "FLAT100"})["times_used"] == 1

    def test_unknown_code(self, client, make_user, make_product):
        pid = make_product()
        _, headers = make_user()
        response = client.post("/coupons/validate", headers=headers, json={
            "code": "NOPE", "items": [{"productId": pid, "quantity": 1}],
        })
        assert response.status_code == 404
        assert response.json()["message"] == "Invalid coupon code"

    def test_below_minimum_purchase(self, client, db, make_user, make_product):
        insert_coupon(db, min_purchase_amount=5000)
        pid = make_product(price=1000)
        _, headers = make_user()
        response = client.post("/coupons/validate", headers=headers, json={
            "code": "FLAT100", "items": [{"productId": pid, "quantity": 1}],
        })
        assert response.status_code == 400
        assert response.json()["message"] == "Minimum purchase amount of Rs. 5000 required"

    def test_requires_login(self, client):
        response = client.post("/coupons/validate", json={
            "code": "FLAT100", "items": [{"productId": "p1", "quantity": 1}],
        })
        assert response.status_code == 401


class TestAdminCoupons:
    def test_create_list_update_delete(self, client, db, make_user, make_product):
        _, admin = make_user("admin@example.com", is_admin=True)

        created = client.post("/coupons", headers=admin, json=coupon_body())
        assert created.status_code == 200
        coupon_id = created.json()["id"]
        stored = db["coupon"].find_one({"_id": ObjectId(coupon_id)})
        assert stored["code"] == "SUMMER20"
        assert stored["times_used"] == 0

        listed = client.get("/coupons", headers=admin).json()
        assert listed["count"] == 1
        assert listed["coupons"][0]["code"] == "SUMMER20"

        updated = client.put(f"/coupons/{coupon_id}", headers=admin, json={"is_active": False})
        assert updated.status_code == 200
        assert updated.json()["coupon"]["is_active"] is False

        pid = make_product(price=1000)
        _, buyer = make_user()
        inactive = client.post("/coupons/validate", headers=buyer, json={
            "code": "SUMMER20", "items": [{"productId": pid, "quantity": 1}],
        })
        assert inactive.status_code == 400
        assert inactive.json()["message"] == "Coupon is not active"

        assert client.delete(f"/coupons/{coupon_id}", headers=admin).status_code == 200
        assert client.delete(f"/coupons/{coupon_id}", headers=admin).status_code == 404

    def test_duplicate_code_rejected(self, client, make_user):
        _, admin = make_user("admin@example.com", is_admin=True)
        client.post("/coupons", headers=admin, json=coupon_body())
        response = client.post("/coupons", headers=admin, json=coupon_body(code="SUMMER20"))
        assert response.status_code == 400
        assert response.json()["message"] == "Coupon code already exists"

    def test_percentage_over_hundred_rejected(self, client, make_user):
        _, admin = make_user("admin@example.com", is_admin=True)
        response = client.post("/coupons", headers=admin, json=coupon_body(discount_value=150))
        assert response.status_code == 400

    def test_update_unknown_coupon(self, client, make_user):
        _, admin = make_user("admin@example.com", is_admin=True)
        response = client.put(f"/coupons/{ObjectId()}", headers=admin, json={"is_active": False})
        assert response.status_code == 404

    def test_non_admin_forbidden(self, client, make_user):
        _, headers = make_user()
        assert client.get("/coupons", headers=headers).status_code == 403
        assert client.post("/coupons", headers=headers, json=coupon_body()).status_code == 403
