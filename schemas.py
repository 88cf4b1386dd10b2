"""
Database Schemas

MongoDB collection schemas as Pydantic models.
Each Pydantic model represents a collection in the database.
Model name lowercased is the collection name.
"""

from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Literal
from datetime import datetime

PaymentMethod = Literal["Cash on Delivery", "bKash", "Nagad"]
OrderStatus = Literal["Payment Pending", "Pending", "Processing", "Delivered", "Cancelled"]
Role = Literal["user", "admin"]
AccountStatus = Literal["active", "blocked"]

ELECTRONIC_PAYMENT_METHODS = ("bKash", "Nagad")


class Address(BaseModel):
    label: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class User(BaseModel):
    """Shadow profile of an externally authenticated identity"""
    uid: str = Field(..., description="Identity provider subject id")
    email: Optional[EmailStr] = Field(None, description="Email address (stored lower-cased)")
    name: str = Field("User", description="Display name")
    photo_url: str = ""
    phone_number: str = ""
    role: Role = "user"
    status: AccountStatus = "active"
    addresses: List[Address] = Field(default_factory=list)


class Rating(BaseModel):
    rate: float = 0
    count: int = 0


class Product(BaseModel):
    title: str
    slug: str = Field(..., description="Unique, derived from title")
    price: float = Field(..., ge=0)
    discount_percentage: float = Field(0, ge=0, le=100)
    description: str
    category: str
    image: str = Field(..., description="Image URL")
    stock: int = Field(..., ge=0)
    rating: Rating = Field(default_factory=Rating)


class CartItem(BaseModel):
    product_id: str
    product_title: str
    product_image: str
    price: float = Field(..., ge=0, description="Unit price captured when added")
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class Order(BaseModel):
    """One purchased product line"""
    user_id: str
    email: Optional[str] = None
    customer_name: str
    product_id: str
    product_title: str
    product_image: str
    unit_price: float = Field(..., ge=0)
    ordered_quantity: int = Field(..., ge=1)
    total_item_price: float = Field(..., ge=0)
    physical_address: str
    map_embed_link: str = ""
    phone: str
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    sender_number: Optional[str] = None
    status: OrderStatus = "Pending"
    checkout_id: Optional[str] = None


class Checkout(BaseModel):
    """All order lines placed by one checkout attempt"""
    user_id: str
    order_ids: List[str] = Field(default_factory=list)
    coupon_code: Optional[str] = None
    subtotal: float
    discount_percentage: float = 0
    discount_amount: float = 0
    delivery_charge: float
    total: float
    payment_method: PaymentMethod


class Reply(BaseModel):
    user_id: str
    user_name: str
    user_photo_url: str = ""
    reply_text: str = Field(..., min_length=1, max_length=500)
    created_at: Optional[datetime] = None


class Review(BaseModel):
    product_id: str
    user_id: str
    user_name: str
    user_photo_url: str = ""
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=1000)
    replies: List[Reply] = Field(default_factory=list)


class Wishlist(BaseModel):
    user_id: str
    product_id: str
