"""
Database Schemas for the Storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
Nested models are embedded sub-documents.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

PaymentStatus = Literal["pending", "paid", "failed", "failed_stock_issue", "refunded"]

OrderStatus = Literal["Processing", "Confirmed", "Shipped", "Out for Delivery", "Delivered", "Cancelled"]
STOCK_FAILURE_STATUS = "Failed - Stock Issue"


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    is_admin: bool = False
    cart: List[CartItem] = []


class Product(BaseModel):
    name: str
    image: str = ""
    description: str = ""
    category: Optional[str] = None
    price: float = Field(..., ge=0)
    discount: float = Field(0, ge=0, description="Absolute amount off the price")
    quantity: int = Field(0, ge=0, description="Units in stock")
    purchase_count: int = Field(0, ge=0, description="Cumulative units sold")


class ShippingAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price_at_purchase: float
    name_at_purchase: str


class StatusEntry(BaseModel):
    status: str
    timestamp: datetime
    note: str = ""


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    subtotal: float
    total_amount: float
    applied_coupon_code: Optional[str] = None
    coupon_discount_amount: float = 0
    shipping_address: ShippingAddress = ShippingAddress()
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    payment_status: PaymentStatus = "pending"
    order_status: str = "Processing"
    status_history: List[StatusEntry] = []
    tracking_number: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    created_at: datetime


class Coupon(BaseModel):
    code: str
    discount_type: Literal["percentage", "fixedAmount"]
    discount_value: float = Field(..., gt=0)
    description: str = ""
    is_active: bool = True
    valid_from: datetime
    valid_until: datetime
    min_purchase_amount: float = 0
    usage_limit: Optional[int] = Field(None, ge=1)
    times_used: int = 0
