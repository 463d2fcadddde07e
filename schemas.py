"""
Database Schemas and request payloads for the NgeBaju storefront

Each document model corresponds to a MongoDB collection (lowercased, snake
case class name). Foreign references are stored as the referenced
document's id string.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, EmailStr, Field

USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"


def _password_strength(value: str) -> str:
    if not re.search(r"\d", value):
        raise ValueError("Password must contain at least one digit")
    return value


Password = Annotated[str, Field(min_length=6), AfterValidator(_password_strength)]


# -----------------------------
# Auth / Users
# -----------------------------
Role = Literal["customer", "admin"]


class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Role = "customer"


class RegisterPayload(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: Password
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9 \-]{6,20}$")
    address: Optional[str] = Field(None, min_length=5)


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9 \-]{6,20}$")
    address: Optional[str] = Field(None, min_length=5)


class PasswordChange(BaseModel):
    current_password: Optional[str] = None
    new_password: Password


class RoleUpdate(BaseModel):
    role: Role


# -----------------------------
# Catalog
# -----------------------------
class Category(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = Field(None, max_length=500)


class ProductSize(BaseModel):
    size: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)


class Product(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10)
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    category_id: str
    images: List[str] = []


def _unique_sizes(sizes: Optional[List[ProductSize]]) -> Optional[List[ProductSize]]:
    if sizes:
        labels = [s.size for s in sizes]
        if len(labels) != len(set(labels)):
            raise ValueError("Size labels must be unique per product")
    return sizes


SizeList = Annotated[Optional[List[ProductSize]], AfterValidator(_unique_sizes)]


class ProductIn(Product):
    sizes: SizeList = None


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=10)
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: Optional[List[str]] = None
    sizes: SizeList = None


# -----------------------------
# Cart
# -----------------------------
class CartItem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None


class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None


class CartQuantity(BaseModel):
    quantity: int = Field(..., ge=1)


# -----------------------------
# Orders
# -----------------------------
class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    completed = "completed"
    cancelled = "cancelled"
    returned = "returned"
    refunded = "refunded"


class LineItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None


class OrderItem(LineItem):
    price: float = Field(..., ge=0)


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    total_price: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.pending


class OrderIn(BaseModel):
    items: List[LineItem] = Field(..., min_length=1)


class StatusUpdate(BaseModel):
    status: OrderStatus
