"""
Database Schemas

MongoDB collection schemas as Pydantic models. Each collection model maps to
one collection: User -> "users", Product -> "products", Cart -> "carts",
Order -> "orders".
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, EmailStr


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class PaymentMethod(str, Enum):
    CARD = "card"
    CRYPTO = "crypto"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Address(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zipcode: str = ""


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., description="BCrypt hashed password")
    role: Role = Field(Role.USER, description="Role: user | admin")
    address: Address = Field(default_factory=Address)
    is_verified: bool = False
    verification_token: Optional[str] = None


class Product(BaseModel):
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)


class CartItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    product_id: ObjectId
    quantity: int = Field(..., gt=0)


class Cart(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_id: ObjectId
    items: List[CartItem] = Field(default_factory=list, description="[{product_id, quantity}]")


class Order(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True, validate_default=True)

    user_id: ObjectId
    items: List[CartItem]
    total_amount: float
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    delivery_date: str = Field(..., description="YYYY-MM-DD")
    crypto_proof: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def to_document(model: BaseModel) -> dict:
    """Dump a collection model for insertion."""
    return model.model_dump(mode="python")
