"""Fixed catalog of pickup / delivery points served by the app (Indore)."""

from __future__ import annotations

from .entities import Location
from .errors import UnknownLocation

LOCATIONS: tuple[Location, ...] = (
    Location("1", "Rajwada Palace", "Rajwada", 22.7186, 75.8553),
    Location("2", "Vijay Nagar Square", "Vijay Nagar", 22.7533, 75.8937),
    Location("3", "Palasia Square", "Palasia", 22.7244, 75.8839),
    Location("4", "Indore Junction", "Chhoti Gwaltoli", 22.7173, 75.8681),
    Location("5", "Devi Ahilyabai Holkar Airport", "Bijasan", 22.7218, 75.8011),
    Location("6", "Sarafa Bazaar", "Sarafa", 22.7178, 75.8545),
    Location("7", "Bhawarkua Square", "Bhawarkua", 22.6927, 75.8672),
    Location("8", "Rau Circle", "Rau", 22.6344, 75.8128),
    Location("9", "Sanwer Road Industrial Area", "Sanwer Road", 22.7634, 75.8417),
    Location("10", "Treasure Island Mall", "South Tukoganj", 22.7212, 75.8781),
)

_BY_ID: dict[str, Location] = {loc.id: loc for loc in LOCATIONS}


def get_location(location_id: str) -> Location:
    location = _BY_ID.get(location_id)
    if location is None:
        raise UnknownLocation(location_id)
    return location
