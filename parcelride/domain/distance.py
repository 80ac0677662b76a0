"""
Distance calculation using the Haversine formula.

Assumption
----------
Fares are based on great-circle distance between the pickup and delivery
points rather than on a road route.  Drivers are paid on the quoted
distance regardless of the road taken, so the value only has to be
stable and symmetric, not exact.

Complexity: O(1) per call.
"""

from __future__ import annotations

import math
from typing import Protocol

EARTH_RADIUS_KM = 6_371.0


class Coordinates(Protocol):
    lat: float
    lng: float


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def round_half_up(amount: float) -> int:
    """Round to the nearest integer, halves upwards (unlike built-in ``round``)."""
    return math.floor(amount + 0.5)


def calculate_distance(origin: Coordinates, destination: Coordinates) -> float:
    """Distance between two catalog points in km, rounded half up to one decimal."""
    km = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng)
    return round_half_up(km * 10) / 10
