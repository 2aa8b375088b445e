from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

from .utils import sanitize_input

OrderStatus = Literal["received", "processing", "completed", "cancelled"]
ORDER_STATUSES = ("received", "processing", "completed", "cancelled")

Role = Literal["admin", "user"]
OtpType = Literal["email_verification", "password_reset", "email_change"]


class CamelModel(BaseModel):
    """JSON uses camelCase keys; Python code uses the snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -------------------- Products --------------------

class ProductCreate(CamelModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    rating: float = Field(default=0, ge=0, le=5)
    review_count: int = Field(default=0, ge=0)
    badge: Optional[str] = None
    category: str = Field(..., min_length=1)
    stock: int = Field(..., ge=0)

    @model_validator(mode="after")
    def discount_below_original(self):
        if self.original_price is not None and self.price >= self.original_price:
            raise ValueError("price must be lower than originalPrice")
        return self


class Product(ProductCreate):
    id: int


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None, min_length=1)
    image: Optional[str] = Field(default=None, min_length=1)
    price: Optional[float] = Field(default=None, ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    review_count: Optional[int] = Field(default=None, ge=0)
    badge: Optional[str] = None
    category: Optional[str] = Field(default=None, min_length=1)
    stock: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def discount_below_original(self):
        if self.price is not None and self.original_price is not None and self.price >= self.original_price:
            raise ValueError("price must be lower than originalPrice")
        return self


# -------------------- Orders --------------------

class OrderItem(CamelModel):
    product_id: int
    product_name: str
    product_image: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class OrderCreate(CamelModel):
    customer_name: str = Field(..., min_length=2)
    customer_email: EmailStr
    customer_phone: str = Field(..., min_length=10)
    notes: Optional[str] = None
    items: List[OrderItem] = Field(..., min_length=1)
    # total should equal the sum of item subtotals; callers are trusted on this
    total: float = Field(..., ge=0)

    @field_validator("notes")
    def clean_notes(cls, v: Optional[str]):
        if v is None:
            return v
        return sanitize_input(v) or None


class Order(OrderCreate):
    id: str
    status: OrderStatus = "received"
    created_at: datetime

    @field_validator("created_at")
    def assume_utc(cls, v: datetime):
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


class OrderStatusUpdate(CamelModel):
    status: OrderStatus


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class OrderPage(CamelModel):
    orders: List[Order]
    pagination: Pagination


# -------------------- Users --------------------

class User(CamelModel):
    """Stored user record. ``password`` holds a passlib hash."""

    id: str
    email: str
    password: str
    name: str
    role: Role = "user"
    is_email_verified: bool = False
    created_at: datetime
    updated_at: datetime

    def public(self) -> "UserRead":
        return UserRead.model_validate(self.model_dump(exclude={"password"}))


class UserRead(CamelModel):
    id: str
    email: str
    name: str
    role: Role = "user"
    is_email_verified: bool = False
    created_at: Optional[datetime] = None


class UserCreate(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1, max_length=100)
    role: Role = "user"


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class OtpRequest(CamelModel):
    email: EmailStr
    type: OtpType


class VerifyOtpRequest(OtpRequest):
    code: str = Field(..., pattern=r"^\d{6}$")


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    email: EmailStr
    code: str = Field(..., pattern=r"^\d{6}$")
    new_password: str = Field(..., min_length=6)


class UpdateProfileRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    current_password: Optional[str] = None
    new_password: Optional[str] = Field(default=None, min_length=6)


class ChangeEmailRequest(CamelModel):
    new_email: EmailStr


class VerifyEmailChangeRequest(CamelModel):
    new_email: EmailStr
    code: str = Field(..., pattern=r"^\d{6}$")


class DeleteAccountRequest(CamelModel):
    password: str = Field(..., min_length=1)


class OTP(CamelModel):
    id: str
    email: str
    code: str
    type: OtpType
    expires_at: datetime
    created_at: datetime


# -------------------- Backup / restore --------------------

class BackupData(CamelModel):
    products: List[Product] = []
    orders: List[Order] = []


class Backup(CamelModel):
    version: str = "1.0.0"
    timestamp: Optional[datetime] = None
    data: BackupData
