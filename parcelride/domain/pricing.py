"""
Vehicle-tier Pricing Engine  (Strategy Pattern)
===============================================

Formula
-------
Total = round(Base_Fare + Distance x Rate_Per_KM)

* **Distance_Charge** = round(Distance x Rate_Per_KM), shown as a line item.
* The total is rounded once, on the sum.  It is *not* the sum of the
  rounded parts, so ``total - base`` may differ from the displayed
  distance charge by one rupee.
* Trips shorter than the minimum distance (2.5 km) are billed as 2.5 km.

Complexity: O(1) per price calculation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from .distance import calculate_distance, round_half_up
from .entities import Location
from .enums import VehicleType
from .errors import InvalidRoute, UnknownVehicleTier

MINIMUM_DISTANCE_KM = 2.5


@dataclass(frozen=True)
class VehicleTier:
    id: str
    base_fare: int
    per_km_rate: int
    name: str
    capacity: str


VEHICLE_TIERS: dict[str, VehicleTier] = {
    VehicleType.AUTO.value: VehicleTier("auto", 50, 10, "Auto", "Up to 200kg"),
    VehicleType.TEMPO.value: VehicleTier("tempo", 100, 10, "Tempo", "Up to 1000kg"),
    VehicleType.TRUCK.value: VehicleTier("truck", 200, 10, "Truck", "1000kg+"),
}


@dataclass(frozen=True)
class PriceQuote:
    base_price: int
    per_km_rate: int
    distance_charge: int
    total_price: int


@dataclass(frozen=True)
class TripQuote:
    vehicle_type: str
    distance: float
    price: PriceQuote


def get_vehicle_tier(vehicle_type: str) -> VehicleTier:
    tier = VEHICLE_TIERS.get(vehicle_type)
    if tier is None:
        raise UnknownVehicleTier(vehicle_type)
    return tier


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(self, distance_km: float, tier: VehicleTier) -> PriceQuote: ...


class StandardPricing(PricingStrategy):
    def calculate(self, distance_km: float, tier: VehicleTier) -> PriceQuote:
        raw = distance_km * tier.per_km_rate
        return PriceQuote(
            base_price=tier.base_fare,
            per_km_rate=tier.per_km_rate,
            distance_charge=round_half_up(raw),
            total_price=round_half_up(tier.base_fare + raw),
        )


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by the lifecycle engine and the quote endpoint."""

    def __init__(
        self,
        strategy: PricingStrategy | None = None,
        minimum_distance_km: float = MINIMUM_DISTANCE_KM,
    ):
        self.strategy = strategy or StandardPricing()
        self.minimum_distance_km = minimum_distance_km

    def calculate_price(self, vehicle_type: str, distance_km: float) -> PriceQuote:
        return self.strategy.calculate(distance_km, get_vehicle_tier(vehicle_type))

    def billable_distance(self, pickup: Location, delivery: Location) -> float:
        return max(calculate_distance(pickup, delivery), self.minimum_distance_km)

    def quote_trip(
        self, pickup: Location, delivery: Location, vehicle_type: str
    ) -> TripQuote:
        if pickup.id == delivery.id:
            raise InvalidRoute("Pickup and delivery locations must differ")
        distance = self.billable_distance(pickup, delivery)
        return TripQuote(
            vehicle_type=vehicle_type,
            distance=distance,
            price=self.calculate_price(vehicle_type, distance),
        )


def calculate_price(vehicle_type: str, distance_km: float) -> PriceQuote:
    """Price *distance_km* on the standard tariff of *vehicle_type*."""
    return StandardPricing().calculate(distance_km, get_vehicle_tier(vehicle_type))
