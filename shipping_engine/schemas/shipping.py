"""
Shipping Schemas

Pydantic models for shipping API requests.
"""
import re
from datetime import date
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from shipping_engine.modules.shipping.carriers.base import AddressInput

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ==================== Quote Schemas ====================


class DestinationIn(BaseModel):
    """Destination address as collected at checkout."""
    postal_code: str = Field(..., max_length=10)
    city: str = Field("", max_length=100)
    state: str = Field("", max_length=100)
    street: str = Field("", max_length=200)
    number: str = Field("", max_length=20)
    district: str = Field("", max_length=100)
    country: str = Field("MX", min_length=2, max_length=2)
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    reference: Optional[str] = Field(None, max_length=200)

    @field_validator("postal_code", mode="before")
    @classmethod
    def strip_postal_code(cls, v):
        if isinstance(v, int):
            v = str(v)
        return v.strip() if isinstance(v, str) else v

    @field_validator("country")
    @classmethod
    def validate_country_code(cls, v):
        return v.upper()

    def to_address(self) -> AddressInput:
        return AddressInput(**self.model_dump())


class CartItemIn(BaseModel):
    """Cart line item; weight in kg, defaults to 0.5 kg when omitted."""
    product_name: Optional[str] = None
    quantity: int = Field(1, ge=1)
    price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    weight: Optional[float] = Field(None, gt=0, le=70)


class QuoteRequest(BaseModel):
    destination: DestinationIn
    items: List[CartItemIn] = []
    carriers: Optional[List[str]] = None

    @field_validator("carriers")
    @classmethod
    def normalize_carriers(cls, v):
        if v is None:
            return v
        return [c.strip().lower() for c in v if c and c.strip()] or None


# ==================== Label Schemas ====================


class LabelRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    carrier: str = ""
    service_id: str = ""

    @field_validator("carrier")
    @classmethod
    def lower_carrier(cls, v):
        return v.strip().lower()


# ==================== Pickup / Cancel Schemas ====================


class PickupRequest(BaseModel):
    carrier: str
    tracking_numbers: Union[List[str], str]
    pickup_date: date
    time_start: str = "09:00"
    time_end: str = "18:00"
    package_count: int = Field(1, ge=1, le=100)

    @field_validator("tracking_numbers")
    @classmethod
    def as_list(cls, v):
        if isinstance(v, str):
            v = [v]
        cleaned = [t.strip() for t in v if t and t.strip()]
        if not cleaned:
            raise ValueError("At least one tracking number is required")
        return cleaned

    @field_validator("time_start", "time_end")
    @classmethod
    def validate_time(cls, v):
        if not TIME_PATTERN.match(v):
            raise ValueError("Time must be HH:MM")
        return v


class CancelRequest(BaseModel):
    carrier: str = Field(..., min_length=1)


# ==================== Sync Schemas ====================


class SyncRequest(BaseModel):
    hours_threshold: Optional[int] = Field(None, ge=0, le=24 * 30)
    batch_size: Optional[int] = Field(None, ge=1, le=20)
