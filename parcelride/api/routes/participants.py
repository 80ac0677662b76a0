"""
Customer / driver views
=======================

GET /api/v1/customers/{customer_id}/active-booking -- open booking or null
GET /api/v1/drivers/{driver_id}/active-booking     -- current trip or null
GET /api/v1/drivers/{driver_id}/earnings           -- completed trips and earnings
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from parcelride.api.dependencies import get_lifecycle
from parcelride.api.middleware import limiter
from parcelride.api.schemas import (
    BookingResponse,
    CustomerBookingResponse,
    DriverEarningsResponse,
)
from parcelride.config import settings
from parcelride.services.lifecycle import BookingLifecycle

router = APIRouter(tags=["participants"])


@router.get(
    "/customers/{customer_id}/active-booking",
    response_model=Optional[CustomerBookingResponse],
    summary="The customer's open booking, if any",
)
@limiter.limit(settings.rate_limit)
async def get_active_customer_booking(
    request: Request,
    customer_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.get_active_customer_booking(customer_id)


@router.get(
    "/drivers/{driver_id}/active-booking",
    response_model=Optional[BookingResponse],
    summary="The driver's accepted or in-progress trip, if any",
)
@limiter.limit(settings.rate_limit)
async def get_active_driver_booking(
    request: Request,
    driver_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.get_active_driver_booking(driver_id)


@router.get(
    "/drivers/{driver_id}/earnings",
    response_model=DriverEarningsResponse,
    summary="Completed trips and earnings (today in UTC)",
)
@limiter.limit(settings.rate_limit)
async def get_driver_earnings(
    request: Request,
    driver_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.get_driver_earnings(driver_id)
