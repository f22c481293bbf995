"""
Database Schemas for the organic grocery store

Each document model corresponds to one MongoDB collection; the collection name
is the lowercase of the class name. Field names go over the wire and into the
database in camelCase (``isDefault``, ``totalAmount``), the Python attributes
stay snake_case.
"""
from datetime import date, datetime
from typing import Annotated, List, Literal, Optional, Union

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Role = Literal["user", "admin"]
Gender = Literal["male", "female", "other"]
Category = Literal["milk", "meat", "organic-oils", "organic-powders"]
MilkSchedule = Literal["morning", "evening", "both"]
OrderStatus = Literal[
    "pending",
    "confirmed",
    "preparing",
    "ready-for-delivery",
    "out-for-delivery",
    "delivered",
    "cancelled",
    "refunded",
]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        arbitrary_types_allowed=True,
    )


# ----------------------- Users -----------------------
class OtpState(CamelModel):
    code_hash: str
    expires_at: datetime
    attempts: int = 0


class User(CamelModel):
    email: EmailStr
    name: str = Field("User", min_length=1)
    gender: Optional[Gender] = None
    date_of_birth: Optional[datetime] = None
    is_verified: bool = False
    is_active: bool = True
    role: Role = "user"
    otp: Optional[OtpState] = None
    addresses: List[ObjectId] = []
    favorite_items: List[ObjectId] = []
    last_login: Optional[datetime] = None


class SendOtpBody(CamelModel):
    email: EmailStr
    name: Optional[str] = Field(None, min_length=2, max_length=50)


class VerifyOtpBody(CamelModel):
    email: EmailStr
    otp: str = Field(..., pattern=r"^\d{4,10}$")


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    gender: Optional[Gender] = None
    date_of_birth: Optional[date] = None


class RoleUpdate(CamelModel):
    role: Role


# ----------------------- Addresses -----------------------
class Coordinates(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class AddressCreate(CamelModel):
    name: str = Field(..., min_length=1)
    street: str = Field(..., min_length=5)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=3)
    country: str = Field(..., min_length=1)
    coordinates: Coordinates
    is_default: bool = False


class AddressUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    street: Optional[str] = Field(None, min_length=5)
    city: Optional[str] = Field(None, min_length=1)
    state: Optional[str] = Field(None, min_length=1)
    postal_code: Optional[str] = Field(None, min_length=3)
    country: Optional[str] = Field(None, min_length=1)
    coordinates: Optional[Coordinates] = None
    is_default: Optional[bool] = None


class Address(AddressCreate):
    user: ObjectId


# ----------------------- Products -----------------------
class NutritionalInfo(CamelModel):
    calories: Optional[float] = None
    protein: Optional[float] = None
    fat: Optional[float] = None
    carbohydrates: Optional[float] = None
    fiber: Optional[float] = None


class Product(CamelModel):
    name: str = Field(..., min_length=1)
    category: Category
    subcategory: Optional[str] = None
    description: str = Field(..., min_length=10)
    price: float = Field(..., ge=0)
    unit: str = Field(..., min_length=1)
    available_quantities: List[str] = Field(..., min_length=1)
    in_stock: bool = True
    image: Optional[str] = None
    nutritional_info: Optional[NutritionalInfo] = None


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    category: Optional[Category] = None
    subcategory: Optional[str] = None
    description: Optional[str] = Field(None, min_length=10)
    price: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = Field(None, min_length=1)
    available_quantities: Optional[List[str]] = Field(None, min_length=1)
    in_stock: Optional[bool] = None
    image: Optional[str] = None
    nutritional_info: Optional[NutritionalInfo] = None


# ----------------------- Orders -----------------------
class MilkOptions(CamelModel):
    kind: Literal["milk"] = "milk"
    schedule: Optional[MilkSchedule] = None


class NoOptions(CamelModel):
    kind: Literal["none"] = "none"


# Category-specific line item data, tagged by ``kind``
LineItemOptions = Annotated[Union[MilkOptions, NoOptions], Field(discriminator="kind")]


class OrderItemIn(CamelModel):
    product: str
    quantity: int = Field(..., ge=1)
    selected_quantity: str = Field(..., min_length=1)
    milk_schedule: Optional[MilkSchedule] = None


class OrderItem(CamelModel):
    product: ObjectId
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    selected_quantity: str
    options: LineItemOptions = NoOptions()


class StatusHistoryEntry(CamelModel):
    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None
    updated_by: Optional[ObjectId] = None


class OrderCreate(CamelModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: str
    total_amount: float = Field(..., ge=0)
    payment_method: Optional[str] = None
    delivery_date: Optional[datetime] = None
    notes: Optional[str] = None


class QuoteRequest(CamelModel):
    items: List[OrderItemIn] = Field(..., min_length=1)


class Order(CamelModel):
    order_number: str
    user: ObjectId
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    shipping_address: ObjectId
    payment_status: PaymentStatus = "pending"
    payment_method: Optional[str] = None
    delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
    status_history: List[StatusHistoryEntry] = []
    actual_delivery_time: Optional[datetime] = None


class StatusUpdate(CamelModel):
    status: OrderStatus
    note: Optional[str] = None


class PaymentUpdate(CamelModel):
    payment_status: PaymentStatus
    payment_method: Optional[str] = None
