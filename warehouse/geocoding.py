"""
Coordinate lookup for delivery addresses.

No external geocoder is called. Coordinates supplied with the delivery
location are used as-is; anything else resolves to (0.0, 0.0).
"""
import logging
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

FALLBACK_COORDINATES: Tuple[float, float] = (0.0, 0.0)


def format_address(location: Dict[str, Any]) -> str:
    return (
        f"{location.get('address', '')}, {location.get('city', '')}, "
        f"{location.get('state', '')} {location.get('postal_code', '')}, {location.get('country', '')}"
    )


def get_coordinates(location: Optional[Dict[str, Any]]) -> Tuple[float, float]:
    """
    Resolve a delivery location to (latitude, longitude).

    Args:
        location: Stored delivery_location dict

    Returns:
        The stored coordinates, or FALLBACK_COORDINATES when none are present
    """
    coordinates = (location or {}).get("coordinates")
    if coordinates and len(coordinates) == 2:
        return float(coordinates[0]), float(coordinates[1])
    logger.warning(f"No coordinates found for address: {format_address(location or {})}")
    return FALLBACK_COORDINATES
