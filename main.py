from datetime import datetime, timedelta, timezone
from typing import List, Literal, Optional

import jwt
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import create_document, get_db, serialize_doc, to_object_id
from errors import ERROR_STATUS_CODES, StorefrontError
from notifications import OrderNotifier, get_mailer
from orders import has_purchased, list_all_orders, list_user_orders, place_order, update_order_status
from payments import create_payment_order, get_gateway
from pricing import price_items, validate_coupon
from schemas import Coupon as CouponSchema, Product as ProductSchema, OrderStatus, User as UserSchema
from settings import configure_logging, settings
from token_store import InMemoryTokenStore

log = structlog.get_logger(__name__)

configure_logging()

app = FastAPI(title="Storefront Orders API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------- Errors -----------------------


def error_response(status_code: int, message: str, error, **extra) -> JSONResponse:
    content = {"success": False, "message": message, "error": error}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    extra = {}
    if getattr(exc, "order_id", None):
        extra["orderId"] = exc.order_id
    return error_response(status_code, str(exc), type(exc).__name__, **extra)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail), str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Raw inputs can hold values JSON cannot encode (NaN, Infinity)
    errors = [{"loc": e["loc"], "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
    return error_response(400, "Invalid request data.", errors)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.error("unhandled_error", path=request.url.path, method=request.method, exc_info=exc)
    return error_response(500, "Internal server error.", str(exc))


# ----------------------- Auth -----------------------
JWT_ALGO = "HS256"
security = HTTPBearer(auto_error=False)
token_store = InMemoryTokenStore()


def get_token_store():
    return token_store


def hash_password(password: str) -> str:
    import hashlib
    return hashlib.sha256(password.encode()).hexdigest()


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=settings.JWT_EXPIRE_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db=Depends(get_db),
    store=Depends(get_token_store),
):
    if credentials is None:
        raise HTTPException(status_code=401, detail="Unauthorized: You need to login first.")
    token = credentials.credentials
    if store.contains(token):
        raise HTTPException(status_code=401, detail="Token revoked")
    payload = decode_token(token)
    user_oid = to_object_id(payload.get("id"))
    if user_oid is None:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    user = db["user"].find_one({"_id": user_oid}, {"password_hash": 0})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    user = serialize_doc(user)
    user["token"] = token
    return user


# ----------------------- Models -----------------------
class SignupBody(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProductCreateBody(ProductSchema):
    pass


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)


class AddToCartBody(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CheckoutLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., ge=1)
    # Informational only; prices are re-read from the catalog
    price_at_purchase: Optional[float] = Field(None, alias="priceAtPurchase")
    name_at_purchase: Optional[str] = Field(None, alias="nameAtPurchase")


class StockCheckBody(BaseModel):
    items: List[CheckoutLine] = Field(..., min_length=1)


class CreatePaymentOrderBody(BaseModel):
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    currency: str = "INR"
    receipt: Optional[str] = None
    notes: Optional[dict] = None
    items: List[CheckoutLine] = Field(..., min_length=1)


class ShippingAddressBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = Field(None, alias="postalCode")
    country: Optional[str] = None


class VerifyPaymentBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)
    items: List[CheckoutLine] = Field(..., min_length=1)
    total_amount: float = Field(..., alias="totalAmount", gt=0, allow_inf_nan=False)
    shipping_address: Optional[ShippingAddressBody] = Field(None, alias="shippingAddress")
    applied_coupon_code: Optional[str] = Field(None, alias="appliedCouponCode")
    coupon_discount: float = Field(0, alias="couponDiscount", ge=0, allow_inf_nan=False)


class CouponValidateBody(BaseModel):
    code: str = Field(..., min_length=1)
    items: List[CheckoutLine] = Field(..., min_length=1)


class CouponUpdateBody(BaseModel):
    description: Optional[str] = None
    discount_type: Optional[Literal["percentage", "fixedAmount"]] = None
    discount_value: Optional[float] = Field(None, gt=0)
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    min_purchase_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)


class OrderStatusBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: OrderStatus
    tracking_number: Optional[str] = Field(None, alias="trackingNumber")
    note: Optional[str] = None


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database(db=Depends(get_db)):
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_name": settings.DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"Error: {str(e)[:80]}"
    return response


# ----------------------- Auth routes -----------------------
@app.post("/auth/signup")
def signup(body: SignupBody, db=Depends(get_db)):
    existing = db["user"].find_one({"email": body.email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user = UserSchema(
        name=body.name,
        email=body.email,
        password_hash=hash_password(body.password),
        is_admin=False,
    )
    user_id = create_document("user", user, database=db)
    token = create_token({"id": user_id, "email": body.email, "is_admin": False})
    return {"token": token, "user": {"id": user_id, "name": body.name, "email": body.email, "is_admin": False}}


@app.post("/auth/login")
def login(body: LoginBody, db=Depends(get_db)):
    user = db["user"].find_one({"email": body.email})
    if not user or user.get("password_hash") != hash_password(body.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    suser = serialize_doc(user)
    token = create_token({"id": suser["id"], "email": suser["email"], "is_admin": suser.get("is_admin", False)})
    return {"token": token, "user": {"id": suser["id"], "name": suser["name"], "email": suser["email"], "is_admin": suser.get("is_admin", False)}}


@app.post("/auth/logout")
def logout(user=Depends(get_current_user), store=Depends(get_token_store)):
    payload = decode_token(user["token"])
    ttl = payload["exp"] - datetime.now(timezone.utc).timestamp()
    store.set(user["token"], True, ttl)
    return {"success": True, "message": "Logged out"}


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, db=Depends(get_db)):
    filt = {}
    if q:
        filt["name"] = {"$regex": q, "$options": "i"}
    if category:
        filt["category"] = category
    items = db["product"].find(filt).limit(100)
    return [serialize_doc(i) for i in items]


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    oid = to_object_id(product_id)
    item = db["product"].find_one({"_id": oid}) if oid else None
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(item)


@app.post("/products")
def create_product(body: ProductCreateBody, user=Depends(get_current_user), db=Depends(get_db)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    pid = create_document("product", body, database=db)
    return {"id": pid}


@app.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user=Depends(get_current_user), db=Depends(get_db)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    update = {k: v for k, v in body.model_dump(exclude_none=True).items()}
    update["updated_at"] = datetime.now(timezone.utc)
    res = db["product"].update_one({"_id": to_object_id(product_id)}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"ok": True}


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    res = db["product"].delete_one({"_id": to_object_id(product_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"ok": True}


# ----------------------- Cart -----------------------
@app.post("/cart/add")
def add_to_cart(body: AddToCartBody, user=Depends(get_current_user), db=Depends(get_db)):
    product_oid = to_object_id(body.product_id)
    if not product_oid or not db["product"].find_one({"_id": product_oid}):
        raise HTTPException(status_code=404, detail="Product not found")
    user_oid = to_object_id(user["id"])
    res = db["user"].update_one(
        {"_id": user_oid, "cart.product_id": body.product_id},
        {"$inc": {"cart.$.quantity": body.quantity}},
    )
    if res.matched_count == 0:
        db["user"].update_one(
            {"_id": user_oid},
            {"$push": {"cart": {"product_id": body.product_id, "quantity": body.quantity}}},
        )
    return {"ok": True}


@app.get("/cart")
def get_cart(user=Depends(get_current_user), db=Depends(get_db)):
    items = []
    total = 0.0
    for item in user.get("cart", []):
        oid = to_object_id(item["product_id"])
        prod = db["product"].find_one({"_id": oid}) if oid else None
        if prod:
            price = max(float(prod["price"]) - float(prod.get("discount") or 0), 0.0)
            subtotal = price * item["quantity"]
            total += subtotal
            items.append({
                "product_id": item["product_id"],
                "name": prod.get("name"),
                "image": prod.get("image"),
                "price": price,
                "quantity": item["quantity"],
                "subtotal": round(subtotal, 2),
            })
    return {"items": items, "total": round(total, 2)}


@app.post("/cart/check-stock")
def check_stock(body: StockCheckBody, user=Depends(get_current_user), db=Depends(get_db)):
    out_of_stock = []
    insufficient_stock = []
    for item in body.items:
        oid = to_object_id(item.product_id)
        product = db["product"].find_one({"_id": oid}) if oid else None
        if not product:
            out_of_stock.append({"productId": item.product_id, "name": "Unknown Product"})
        elif product.get("quantity", 0) == 0:
            out_of_stock.append({"productId": item.product_id, "name": product.get("name")})
        elif product["quantity"] < item.quantity:
            insufficient_stock.append({
                "productId": item.product_id,
                "name": product.get("name"),
                "requested": item.quantity,
                "available": product["quantity"],
            })
    if out_of_stock or insufficient_stock:
        return JSONResponse(status_code=400, content={
            "success": False,
            "message": "Stock validation failed",
            "outOfStock": out_of_stock,
            "insufficientStock": insufficient_stock,
        })
    return {"success": True, "message": "All items are in stock"}


# ----------------------- Orders -----------------------
@app.post("/orders/create")
def create_order(body: CreatePaymentOrderBody, user=Depends(get_current_user), gateway=Depends(get_gateway)):
    result = create_payment_order(gateway, body.amount, body.currency, body.receipt, body.notes)
    return {"success": True, "message": "Razorpay order created successfully.", **result}


@app.post("/orders/verify-payment")
def verify_payment(
    body: VerifyPaymentBody,
    user=Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
    mailer=Depends(get_mailer),
):
    order = place_order(db, OrderNotifier(mailer), user, body, gateway.key_secret)
    return {"success": True, "message": "Order placed successfully!", "order": order}


@app.get("/orders/my-orders")
def my_orders(user=Depends(get_current_user), db=Depends(get_db)):
    return {"success": True, "orders": list_user_orders(db, user["id"])}


@app.get("/orders/has-purchased/{product_id}")
def check_purchased(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return {"success": True, "hasPurchased": has_purchased(db, user["id"], product_id)}


# ----------------------- Coupons -----------------------
@app.post("/coupons/validate")
def validate_coupon_code(body: CouponValidateBody, user=Depends(get_current_user), db=Depends(get_db)):
    items = price_items(db, body.items)
    subtotal = round(sum(i.price_at_purchase * i.quantity for i in items), 2)
    coupon, discount = validate_coupon(db, body.code, subtotal)
    return {
        "success": True,
        "coupon": {
            "code": coupon["code"],
            "description": coupon.get("description", ""),
            "discountType": coupon["discount_type"],
            "discountValue": coupon["discount_value"],
            "minPurchaseAmount": coupon.get("min_purchase_amount", 0),
            "applicableAmount": subtotal,
            "discount": discount,
        },
        "finalTotal": round(subtotal - discount, 2),
    }


@app.get("/coupons")
def list_coupons(user=Depends(get_current_user), db=Depends(get_db)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    coupons = [serialize_doc(c) for c in db["coupon"].find().sort("created_at", -1)]
    return {"success": True, "count": len(coupons), "coupons": coupons}


@app.post("/coupons")
def create_coupon(body: CouponSchema, user=Depends(get_current_user), db=Depends(get_db)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    body.code = body.code.strip().upper()
    if body.discount_type == "percentage" and body.discount_value > 100:
        raise HTTPException(status_code=400, detail="Percentage discount must be between 0 and 100")
    if db["coupon"].find_one({"code": body.code}):
        raise HTTPException(status_code=400, detail="Coupon code already exists")
    body.times_used = 0
    cid = create_document("coupon", body, database=db)
    return {"success": True, "message": "Coupon created successfully", "id": cid}


@app.put("/coupons/{coupon_id}")
def update_coupon(coupon_id: str, body: CouponUpdateBody, user=Depends(get_current_user), db=Depends(get_db)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    oid = to_object_id(coupon_id)
    current = db["coupon"].find_one({"_id": oid}) if oid else None
    if not current:
        raise HTTPException(status_code=404, detail="Coupon not found")
    update = body.model_dump(exclude_none=True)
    discount_type = update.get("discount_type", current["discount_type"])
    discount_value = update.get("discount_value", current["discount_value"])
    if discount_type == "percentage" and discount_value > 100:
        raise HTTPException(status_code=400, detail="Percentage discount must be between 0 and 100")
    update["updated_at"] = datetime.now(timezone.utc)
    db["coupon"].update_one({"_id": oid}, {"$set": update})
    return {"success": True, "coupon": serialize_doc(db["coupon"].find_one({"_id": oid}))}


@app.delete("/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    res = db["coupon"].delete_one({"_id": to_object_id(coupon_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"success": True, "message": "Coupon deleted successfully"}


# ----------------------- Admin -----------------------
@app.get("/admin/orders")
def admin_orders(user=Depends(get_current_user), db=Depends(get_db)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    return {"success": True, "orders": list_all_orders(db)}


@app.put("/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, body: OrderStatusBody, user=Depends(get_current_user), db=Depends(get_db)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    order = update_order_status(db, order_id, body.status, body.tracking_number, body.note)
    return {"success": True, "message": "Order status updated successfully.", "order": order}


@app.get("/admin/stats")
def admin_stats(user=Depends(get_current_user), db=Depends(get_db)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    return {
        "users": db["user"].count_documents({}),
        "products": db["product"].count_documents({}),
        "orders": db["order"].count_documents({}),
        "paid_orders": db["order"].count_documents({"payment_status": "paid"}),
        "stock_issues": db["order"].count_documents({"payment_status": "failed_stock_issue"}),
    }


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "name": "Classic Leather Tote",
        "image": "https://images.unsplash.com/photo-1584917865442-de89df76afd3",
        "description": "Full-grain leather tote with brass hardware.",
        "category": "Bags",
        "price": 4999,
        "discount": 500,
        "quantity": 20,
    },
    {
        "name": "Canvas Weekender",
        "image": "https://images.unsplash.com/photo-1553062407-98eeb64c6a62",
        "description": "Roomy waxed-canvas duffel for short trips.",
        "category": "Bags",
        "price": 3499,
        "discount": 0,
        "quantity": 15,
    },
    {
        "name": "Minimal Card Wallet",
        "image": "https://images.unsplash.com/photo-1627123424574-724758594e93",
        "description": "Slim wallet holding up to six cards.",
        "category": "Accessories",
        "price": 999,
        "discount": 100,
        "quantity": 50,
    },
    {
        "name": "Laptop Sleeve 14\"",
        "image": "https://images.unsplash.com/photo-1547949003-9792a18a2601",
        "description": "Felt-lined sleeve with magnetic closure.",
        "category": "Accessories",
        "price": 1499,
        "discount": 0,
        "quantity": 30,
    },
]


@app.post("/seed")
def seed(db=Depends(get_db)):
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        create_document("product", ProductSchema(**p), database=db)
    now = datetime.now(timezone.utc)
    if db["coupon"].count_documents({}) == 0:
        coupon = CouponSchema(
            code="WELCOME10",
            discount_type="percentage",
            discount_value=10,
            description="10% off your first order",
            valid_from=now,
            valid_until=now + timedelta(days=365),
            min_purchase_amount=999,
        )
        create_document("coupon", coupon, database=db)
    # create admin user if none
    if db["user"].count_documents({"is_admin": True}) == 0:
        admin = UserSchema(name="Admin", email="admin@scatch.shop", password_hash=hash_password("admin123"), is_admin=True)
        create_document("user", admin, database=db)
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
