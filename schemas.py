"""
Database Schemas for the reptile shop

Each collection model below validates a document before it is written to
MongoDB; collection name is the lowercase of the class name ("forumpost" is
stored as "forum"). The *Create / *Update / *Request models are request
bodies: they are validated before any store call is made.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


# Accounts

class User(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address, unique")
    password_hash: str = Field(..., description="bcrypt hash")
    avatar_url: Optional[str] = None
    reset_token: Optional[str] = None
    is_admin: bool = False


class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class SigninRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=1)
    avatar_url: Optional[str] = None


class AdminUserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    is_admin: Optional[bool] = None


class ForgetPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=1)


class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    avatar_url: Optional[str] = None
    is_admin: bool = False


class AuthOut(UserOut):
    token: str


# Catalog

class Review(BaseModel):
    id: str
    user_id: str
    name: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, description="URL-safe identifier, unique")
    price: float = Field(..., ge=0)
    count_in_stock: int = Field(..., ge=0)
    sold: int = Field(0, ge=0)
    category: str
    country: str
    description: str = ""
    images: List[str] = []
    reviews: List[Review] = []
    num_reviews: int = 0
    rating: float = 0.0


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    count_in_stock: int = Field(0, ge=0)
    category: str
    country: str
    description: str = ""
    images: List[str] = []


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    count_in_stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    country: Optional[str] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None


# Orders

class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0, description="Snapshot of price at order time")
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class ShippingAddress(BaseModel):
    full_name: str
    address: str
    city: str
    postal_code: str
    country: str


class PaymentResult(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None


class OrderCreate(BaseModel):
    order_items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: str = Field(..., min_length=1)
    items_price: float = Field(..., ge=0)
    shipping_price: float = Field(0.0, ge=0)
    tax_price: float = Field(0.0, ge=0)
    total_price: Optional[float] = Field(None, ge=0, description="Ignored; recomputed from the breakdown")


class Order(BaseModel):
    user_id: str
    order_items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: str
    items_price: float = Field(..., ge=0)
    shipping_price: float = Field(..., ge=0)
    tax_price: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    payment_result: Optional[PaymentResult] = None
    inventory_applied: bool = False
    stock_claimed: List[int] = Field(default_factory=list, description="Indexes of order_items being taken out of stock")
    stock_applied: List[int] = Field(default_factory=list, description="Indexes of order_items taken out of stock")
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None


# Forum

class Comment(BaseModel):
    id: str
    user_id: str
    name: str
    text: str = Field(..., min_length=1)
    created_at: datetime
    updated_at: datetime


class CommentIn(BaseModel):
    text: str = Field(..., min_length=1)


class ForumPost(BaseModel):
    user_id: str
    title: str
    text: str = ""
    images: List[str] = []
    comments: List[Comment] = []
    likes: List[str] = []
    dislikes: List[str] = []
    likes_count: int = 0
    dislikes_count: int = 0


class PostCreate(BaseModel):
    title: str = Field("Sample Post", min_length=1)
    text: str = ""
    images: List[str] = []


class PostUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    text: Optional[str] = None
    images: Optional[List[str]] = None


class VoteOut(BaseModel):
    vote: Optional[Literal["like", "dislike"]] = None
    likes_count: int
    dislikes_count: int
