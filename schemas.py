"""
Database Schemas

MongoDB collection schemas and the request/response shapes built on them.
Model name lowercased is the collection name (product, order); the user
collection is only read, for CustomerSummary.
Documents are stored with snake_case keys; the HTTP wire uses camelCase.
"""
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PaymentMethod = Literal["online", "cod", "upi"]
OrderStatus = Literal["pending", "confirmed", "delivered", "cancelled"]

SELLER_ROLES = ("farmer", "retailer")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StrictModel(CamelModel):
    """Request bodies: unknown fields are rejected, never merged into documents."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# Collection: product
class Product(StrictModel):
    name: str = Field(..., min_length=1, description="Product name")
    description: Optional[str] = None
    price: float = Field(..., gt=0, description="Price per unit")
    unit: str = Field("unit", description="Unit label, e.g. kg")
    stock: int = Field(0, ge=0, strict=True)
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    visible: bool = True


class ProductUpdate(StrictModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    unit: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0, strict=True)
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    visible: Optional[bool] = None


# Collection: order
class OrderItem(StrictModel):
    product_id: str
    quantity: int = Field(..., gt=0, strict=True)

    @field_validator("product_id")
    @classmethod
    def check_object_id(cls, v: str) -> str:
        if not ObjectId.is_valid(v):
            raise ValueError(f"Invalid product id: {v}")
        return v


class OrderIn(StrictModel):
    """The cart submitted at checkout."""
    items: List[OrderItem] = Field(..., min_length=1)
    total_price: Optional[float] = Field(None, ge=0)
    payment_method: PaymentMethod = "cod"
    delivery_address: str
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None

    @field_validator("delivery_address")
    @classmethod
    def address_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Delivery address is required")
        return v


class StatusUpdate(StrictModel):
    status: OrderStatus


# ---------- Responses ----------

class CustomerSummary(CamelModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None


class ProductSummary(CamelModel):
    id: str
    name: str
    price: float
    unit: str = "unit"
    farmer_id: str


class ProductOut(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    price: float
    unit: str = "unit"
    stock: int
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    farmer_id: str
    buyers_count: int = 0
    buyers: List[str] = Field(default_factory=list)
    visible: bool = True
    created_at: Optional[datetime] = None


class OrderItemOut(CamelModel):
    product_id: str
    quantity: int
    product: Optional[ProductSummary] = None


class OrderOut(CamelModel):
    id: str
    customer_id: str
    customer: Optional[CustomerSummary] = None
    items: List[OrderItemOut]
    total_price: float
    payment_method: PaymentMethod = "cod"
    delivery_address: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    status: OrderStatus = "pending"
    created_at: datetime


class OrderPlaced(CamelModel):
    message: str
    order: OrderOut
