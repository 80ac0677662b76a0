"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from parcelride.domain.enums import BookingStatus


# ── Requests ──────────────────────────────────────────────────────────


class CustomerIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=120)
    phone: str = Field(..., min_length=1, max_length=20)


class DriverIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=120)
    phone: str = Field(..., min_length=1, max_length=20)
    vehicle_number: str = Field(..., min_length=1, max_length=20)


class QuoteRequest(BaseModel):
    pickup_id: str
    delivery_id: str
    vehicle_type: str


class BookingCreateRequest(QuoteRequest):
    customer: CustomerIn
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class AcceptRequest(BaseModel):
    driver: DriverIn


class StartTripRequest(BaseModel):
    otp: str = Field(..., min_length=1, max_length=8)


# ── Responses ─────────────────────────────────────────────────────────


class LocationResponse(BaseModel):
    id: str
    name: str
    area: str
    lat: float
    lng: float

    model_config = {"from_attributes": True}


class VehicleTierResponse(BaseModel):
    id: str
    name: str
    capacity: str
    base_fare: int
    per_km_rate: int

    model_config = {"from_attributes": True}


class QuoteResponse(BaseModel):
    vehicle_type: str
    distance: float
    base_price: int
    per_km_rate: int
    distance_charge: int
    total_price: int


class BookingResponse(BaseModel):
    """Booking as shown to drivers: no OTP."""

    id: str
    customer_id: str
    customer_name: str
    customer_phone: str
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    driver_vehicle_number: Optional[str] = None
    pickup: LocationResponse
    delivery: LocationResponse
    vehicle_type: str
    distance: float
    base_price: int
    distance_charge: int
    total_price: int
    status: BookingStatus
    version: int
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CustomerBookingResponse(BookingResponse):
    """Booking as shown to its customer, who reads the OTP to the driver."""

    otp: str


class DriverEarningsResponse(BaseModel):
    driver_id: str
    completed_trips: int
    total_earnings: int
    today_earnings: int

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
