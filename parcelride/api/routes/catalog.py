"""
Catalog / pricing endpoints
===========================

GET  /api/v1/catalog/locations     -- pickup / delivery points
GET  /api/v1/catalog/vehicle-tiers -- tiers with fares
POST /api/v1/quotes                -- fare preview before booking
GET  /api/v1/health                -- simple health check
"""

from fastapi import APIRouter, Request

from parcelride.api.middleware import limiter
from parcelride.api.schemas import (
    ErrorResponse,
    HealthResponse,
    LocationResponse,
    QuoteRequest,
    QuoteResponse,
    VehicleTierResponse,
)
from parcelride.config import settings
from parcelride.domain.locations import LOCATIONS, get_location
from parcelride.domain.pricing import VEHICLE_TIERS, PricingEngine

router = APIRouter(tags=["catalog"])


@router.get(
    "/catalog/locations",
    response_model=list[LocationResponse],
    summary="List pickup / delivery points",
)
async def list_locations():
    return [LocationResponse.model_validate(loc) for loc in LOCATIONS]


@router.get(
    "/catalog/vehicle-tiers",
    response_model=list[VehicleTierResponse],
    summary="List vehicle tiers and their fares",
)
async def list_vehicle_tiers():
    return [VehicleTierResponse.model_validate(t) for t in VEHICLE_TIERS.values()]


@router.post(
    "/quotes",
    response_model=QuoteResponse,
    summary="Fare preview for a route and vehicle tier",
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def create_quote(request: Request, body: QuoteRequest):
    pricing = PricingEngine(minimum_distance_km=settings.minimum_distance_km)
    quote = pricing.quote_trip(
        get_location(body.pickup_id),
        get_location(body.delivery_id),
        body.vehicle_type,
    )
    return QuoteResponse(
        vehicle_type=quote.vehicle_type,
        distance=quote.distance,
        base_price=quote.price.base_price,
        per_km_rate=quote.price.per_km_rate,
        distance_charge=quote.price.distance_charge,
        total_price=quote.price.total_price,
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
