"""Great-circle distance between incident locations."""

import math
from typing import Optional

from ..models import Coordinates

EARTH_RADIUS_M = 6371000.0
EARTH_RADIUS_KM = 6371.0


def haversine_distance(
    lat1: float, lon1: float, lat2: float, lon2: float, radius: float = EARTH_RADIUS_M
) -> float:
    """Haversine distance between two (lat, lon) points in degrees.

    The result is in the unit of ``radius``: meters by default, pass
    ``EARTH_RADIUS_KM`` for kilometres.
    """
    if lat1 == lat2 and lon1 == lon2:
        return 0.0

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Rounding can push a fraction above 1 for antipodal points
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return radius * c


def distance_between(a: Optional[Coordinates], b: Optional[Coordinates]) -> float:
    """Distance in meters, or infinity when either side lacks coordinates."""
    if a is None or b is None:
        return math.inf
    return haversine_distance(a.lat, a.lon, b.lat, b.lon)
