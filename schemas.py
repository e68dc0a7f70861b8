"""
Database Schemas

MongoDB collection schemas as Pydantic models.
Each Pydantic model represents a collection in your database.
Model name lowercased is the collection name.

References between documents are stored as the hex string of the target _id.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

ROLES = ("Shopper", "Admin")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    items: List[CartItem] = Field(default_factory=list, description="[{product_id, quantity}], product_id unique")


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, unique")
    password_hash: str = Field(..., description="BCrypt hashed password")
    image: str = Field(..., description="Profile image URL")
    role: Literal["Shopper", "Admin"] = Field("Shopper", description="Role: Shopper | Admin")
    products: List[str] = Field(default_factory=list, description="Ids of products this user created")
    wishlists: List[str] = Field(default_factory=list, description="Ids of wishlist entries")
    cart: Cart = Field(default_factory=Cart)


class Product(BaseModel):
    title: str
    author: str
    description: str = Field(..., min_length=5)
    category: str
    stock: str = Field(..., description="Quantity in stock, stored as text")
    price: float = Field(..., ge=0)
    image_url: str
    creator: str = Field(..., description="Id of the admin who created the product")
    comments: List[str] = Field(default_factory=list)


class Comment(BaseModel):
    title: str
    description: str
    user_image_url: Optional[str] = None
    product_id: str
    created_at: datetime = Field(default_factory=utcnow)


class OrderUser(BaseModel):
    email: str
    user_id: str


class OrderLine(BaseModel):
    quantity: int = Field(..., ge=1)
    product: dict = Field(..., description="Copy of the product document at checkout time")


class Order(BaseModel):
    user: OrderUser
    products: List[OrderLine]
    created_at: datetime = Field(default_factory=utcnow)


class Wishlist(BaseModel):
    title: str
    author: str
    description: str
    category: str
    stock: str
    price: float = Field(..., ge=0)
    image_url: str
    creator: str = Field(..., description="Id of the user who saved the entry")
    item_id: str = Field(..., description="Id of the product the entry was saved from")
    created_at: datetime = Field(default_factory=utcnow)
