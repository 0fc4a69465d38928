"""
Database Schemas for the Buzzer Restaurant Ordering API

Each Pydantic model below corresponds to a MongoDB collection.
The collection name is the lowercase class name (e.g., User -> "user").
References between collections are stored as the referenced `_id` string.
"""
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr

OrderStatus = Literal["PENDING", "COMPLETED", "CANCELLED"]
ORDER_STATUSES = ("PENDING", "COMPLETED", "CANCELLED")
TERMINAL_STATUSES = ("COMPLETED", "CANCELLED")


class User(BaseModel):
    firebase_uid: str = Field(..., description="Verified external identity (unique)")
    full_name: str = Field(..., description="Full name")
    mobile_number: str = Field(..., description="Unique mobile number")
    email: Optional[EmailStr] = Field(None, description="Unique email address, optional")
    type: Literal["user", "admin"] = Field("user", description="Role, never self-assigned")
    image: Optional[str] = None


class Category(BaseModel):
    name: str = Field(..., description="Category name")
    image: Optional[str] = None


class Restaurant(BaseModel):
    name: str
    type: str = Field(..., description="Cuisine / kind of place")
    location: str = Field(..., description="Human readable address")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    rating: float = Field(0, ge=0, le=5)
    image_url: Optional[str] = None


class Product(BaseModel):
    name: str
    description: Optional[str] = None
    price: float = Field(..., gt=0)
    original_price: Optional[float] = None
    discount_percent: Optional[int] = None
    image: Optional[str] = None
    images: List[str] = Field(default_factory=list, description="Primary image first")
    rate: Optional[float] = Field(None, description="Mean review rating, derived")
    is_featured: bool = False
    category_id: str = Field(..., description="Reference to category _id")
    restaurant_id: Optional[str] = Field(None, description="Reference to restaurant _id")


class Review(BaseModel):
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class OrderItem(BaseModel):
    id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    price: str = Field(..., description="Snapshot of the product price at order time")


class Order(BaseModel):
    user_id: str
    total_price: str = Field(..., description="Decimal rendered as a string")
    status: OrderStatus = "PENDING"
    location: Optional[str] = None
    items: List[OrderItem] = Field(..., description="Embedded line items, written with the order")


"""
Notes:
- Order items live inside the order document so an order and its lines are
  written in a single atomic insert.
- Product.rate is only ever written by the review aggregator.
"""
