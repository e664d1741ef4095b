"""
Database Schemas for the Shop API

Each stored Pydantic model corresponds to a MongoDB collection. The collection
name is the lowercase of the class name.

- User -> "user"
- Product -> "product"
- Cart -> "cart"
- Order -> "order"

Fields are snake_case in Python and camelCase on the wire and in MongoDB.
The *Create / *Update models validate request bodies.
"""
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from bson import ObjectId
from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

PLACEHOLDER_IMAGE = "https://via.placeholder.com/300x300?text=No+Image"

Role = Literal["user", "admin"]
CartStatus = Literal["active", "ordered", "cancelled"]
PaymentMethod = Literal["card", "cash on delivery", "bank transfer"]
PaymentStatus = Literal["pending", "paid", "failed"]
OrderStatus = Literal["processing", "shipped", "delivered", "cancelled"]


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError("Invalid id")
    return value


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]


class ShopModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )


class Address(ShopModel):
    street: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    @field_validator("street", "city", "country")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class ShippingAddress(Address):
    zip: Optional[str] = None


# Users

class UserCreate(ShopModel):
    name: str = Field(..., min_length=2, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    age: int = Field(..., ge=0, description="Age in years")
    password: str = Field(..., min_length=6, description="Plain password, hashed before storage")
    address: Optional[Address] = None
    role: Role = Field("user", description="Role: user or admin")
    is_active: bool = Field(True, description="Whether user is active")
    hobbies: List[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("hobbies")
    @classmethod
    def _strip_hobbies(cls, v):
        return [h.strip() for h in v]


class UserUpdate(UserCreate):
    """PUT body: only the fields sent are written."""
    name: Optional[str] = Field(None, min_length=2)
    email: Optional[EmailStr] = None
    age: Optional[int] = Field(None, ge=0)
    password: Optional[str] = Field(None, min_length=6, description="New password; re-hashed when present")
    role: Optional[Role] = None
    is_active: Optional[bool] = None
    hobbies: Optional[List[str]] = None

    @field_validator("hobbies")
    @classmethod
    def _strip_hobbies(cls, v):
        return [h.strip() for h in v] if v is not None else v


class User(ShopModel):
    """Users collection schema"""
    name: str
    email: str
    age: int
    password: str = Field(..., description="BCrypt password hash")
    address: Optional[Address] = None
    role: Role = "user"
    is_active: bool = True
    hobbies: List[str] = Field(default_factory=list)


# Products

class ProductCreate(ShopModel):
    name: str = Field(..., min_length=2, description="Product name")
    price: float = Field(..., ge=0, description="Unit price")
    stock: int = Field(..., ge=0, description="Units in stock")
    category: Optional[str] = Field("general", description="Product category")
    description: Optional[str] = Field(None, max_length=500)
    image_url: str = Field(PLACEHOLDER_IMAGE, description="Primary image URL")
    ratings: List[Annotated[int, Field(ge=1, le=5)]] = Field(default_factory=list)

    @field_validator("name", "category", "description", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("category")
    @classmethod
    def _default_category(cls, v):
        return v or "general"


class ProductUpdate(ProductCreate):
    """PUT body: only the fields sent are written."""
    name: Optional[str] = Field(None, min_length=2)
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    ratings: Optional[List[Annotated[int, Field(ge=1, le=5)]]] = None


class Product(ProductCreate):
    """Products collection schema"""
    is_available: bool = Field(..., description="True iff stock > 0")


# Carts

class CartItemIn(ShopModel):
    product_id: ObjectIdStr
    quantity: int = Field(..., ge=1, description="Quantity must be at least 1")


class CartCreate(ShopModel):
    user_id: ObjectIdStr
    items: List[CartItemIn] = Field(..., min_length=1, description="At least one item is required in the cart")


class CartItem(ShopModel):
    product_id: ObjectId
    quantity: int = Field(..., ge=1)


class Cart(ShopModel):
    """Carts collection schema"""
    user_id: ObjectId
    items: List[CartItem] = Field(default_factory=list)
    total: float = Field(0, ge=0, description="Sum of quantity x product price at last save")
    status: CartStatus = "active"


# Orders

class OrderItemIn(ShopModel):
    product_id: ObjectIdStr
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price captured at order time")


class OrderCreate(ShopModel):
    user_id: ObjectIdStr
    items: List[OrderItemIn] = Field(..., min_length=1, description="At least one item is required")
    total_amount: float = Field(..., ge=0)
    payment_method: PaymentMethod
    shipping_address: Optional[ShippingAddress] = None


class OrderUpdate(ShopModel):
    order_status: Optional[OrderStatus] = Field(None, validation_alias=AliasChoices("status", "orderStatus"), serialization_alias="orderStatus")
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    shipping_address: Optional[ShippingAddress] = None


class OrderStatusUpdate(ShopModel):
    status: OrderStatus


class OrderItem(ShopModel):
    product_id: ObjectId
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class Order(ShopModel):
    """Orders collection schema"""
    user_id: ObjectId
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    order_status: OrderStatus = "processing"
    order_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    shipping_address: Optional[ShippingAddress] = None
