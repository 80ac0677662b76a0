"""
Booking endpoints
=================

POST /api/v1/bookings                       -- create a booking (customer)
GET  /api/v1/bookings?customer_id=          -- customer booking history
GET  /api/v1/bookings/requests?vehicle_type= -- pending requests for a tier (driver)
GET  /api/v1/bookings/{booking_id}          -- booking status
POST /api/v1/bookings/{booking_id}/accept   -- driver accepts
POST /api/v1/bookings/{booking_id}/start    -- driver starts the trip with the OTP
POST /api/v1/bookings/{booking_id}/complete -- driver completes the trip
POST /api/v1/bookings/{booking_id}/cancel   -- customer cancels a pending booking
WS   /api/v1/ws/bookings/{booking_id}       -- live status updates

Engine failures (``BookingError``) are translated to HTTP responses by the
exception handler registered in the app factory.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect

from parcelride.api.dependencies import get_event_bus, get_lifecycle, lifecycle_scope
from parcelride.api.middleware import limiter
from parcelride.api.schemas import (
    AcceptRequest,
    BookingCreateRequest,
    BookingResponse,
    CustomerBookingResponse,
    ErrorResponse,
    StartTripRequest,
)
from parcelride.config import settings
from parcelride.domain.entities import Booking, CustomerInfo, DriverInfo
from parcelride.domain.errors import BookingNotFound
from parcelride.domain.locations import get_location
from parcelride.domain.pricing import get_vehicle_tier
from parcelride.services.lifecycle import BookingLifecycle
from parcelride.workers.watcher import watch_booking

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])
ws_router = APIRouter(tags=["bookings"])

_errors = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post(
    "",
    status_code=201,
    response_model=CustomerBookingResponse,
    summary="Create a booking",
    responses={**_errors, 422: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.create_booking(
        customer=CustomerInfo(**body.customer.model_dump()),
        pickup=get_location(body.pickup_id),
        delivery=get_location(body.delivery_id),
        vehicle_type=body.vehicle_type,
        idempotency_key=body.idempotency_key,
    )


@router.get(
    "",
    response_model=list[CustomerBookingResponse],
    summary="List a customer's bookings, oldest first",
)
@limiter.limit(settings.rate_limit)
async def list_customer_bookings(
    request: Request,
    customer_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.get_customer_bookings(customer_id)


@router.get(
    "/requests",
    response_model=list[BookingResponse],
    summary="Pending booking requests for a vehicle tier",
)
@limiter.limit(settings.rate_limit)
async def list_driver_requests(
    request: Request,
    vehicle_type: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    get_vehicle_tier(vehicle_type)
    return await lifecycle.get_driver_requests(vehicle_type)


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get booking status",
    responses=_errors,
)
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.get_booking(booking_id)


@router.post(
    "/{booking_id}/accept",
    response_model=BookingResponse,
    summary="Accept a pending booking",
    responses=_errors,
)
@limiter.limit(settings.rate_limit)
async def accept_booking(
    request: Request,
    booking_id: str,
    body: AcceptRequest,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.accept_booking(
        booking_id, DriverInfo(**body.driver.model_dump())
    )


@router.post(
    "/{booking_id}/start",
    response_model=BookingResponse,
    summary="Start the trip after verifying the customer's OTP",
    responses={**_errors, 400: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    booking_id: str,
    body: StartTripRequest,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.start_trip(booking_id, body.otp)


@router.post(
    "/{booking_id}/complete",
    response_model=BookingResponse,
    summary="Complete an in-progress trip",
    responses=_errors,
)
@limiter.limit(settings.rate_limit)
async def complete_trip(
    request: Request,
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.complete_trip(booking_id)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    summary="Cancel a booking",
    description="Only pending bookings can be cancelled.",
    responses=_errors,
)
@limiter.limit(settings.rate_limit)
async def cancel_booking(
    request: Request,
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.cancel_booking(booking_id)


@ws_router.websocket("/ws/bookings/{booking_id}")
async def booking_updates(websocket: WebSocket, booking_id: str):
    await websocket.accept()

    async def fetch(bid: str) -> Booking:
        async with lifecycle_scope() as lifecycle:
            return await lifecycle.get_booking(bid)

    try:
        async for booking in watch_booking(booking_id, fetch, get_event_bus()):
            payload = BookingResponse.model_validate(booking)
            await websocket.send_json(payload.model_dump(mode="json"))
    except BookingNotFound as exc:
        await websocket.close(code=4404, reason=exc.message)
        return
    except WebSocketDisconnect:
        logger.debug("Watcher for booking %s disconnected", booking_id)
        return
    await websocket.close()
