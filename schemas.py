"""
Database Schemas for the Storefront API

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name. Reference fields hold raw ObjectIds.
"""
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field

Role = Literal["user", "admin"]
Category = Literal[
    "electronics",
    "clothing",
    "books",
    "home",
    "other",
    "accessories",
    "storage",
    "furniture",
]
PaymentMethod = Literal["creditCard", "debitCard", "paypal"]
OrderStatus = Literal["pending", "cancelled"]


class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., description="BCrypt hash of the password")
    role: Role = "user"
    active: bool = True


class ProductBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    price: float = Field(..., gt=0)
    category: Category
    stock: int = Field(..., ge=0)


class Rating(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None


class Product(ProductBase):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    createdBy: ObjectId
    ratings: List[Rating] = []
    averageRating: float = 0


class ShippingAddress(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zipCode: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    product: ObjectId
    quantity: int = Field(..., ge=1)
    price: float = Field(..., description="Unit price captured when the order was placed")


class Order(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId
    items: List[OrderItem] = Field(..., min_length=1)
    totalAmount: float = Field(..., ge=0)
    shippingAddress: ShippingAddress
    paymentMethod: PaymentMethod
    status: OrderStatus = "pending"
