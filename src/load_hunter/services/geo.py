"""Great-circle distance between two lat/lng points."""

import math

EARTH_RADIUS_MILES = 3958.8


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return the great-circle distance in miles between two lat/lng points.

    Inputs are degrees and must be finite numbers; callers skip the check
    when either point is missing a coordinate.
    """
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def has_coordinates(lat, lng) -> bool:
    """True when both components are present (0.0 counts as present)."""
    return lat is not None and lng is not None
