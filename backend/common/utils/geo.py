"""
Geographic utility functions.

This module provides core geospatial calculations used throughout the application.
Both fare pricing and driver-side ride ranking go through calculate_distance,
so the formula here must stay stable.
"""

import math
from math import radians, cos, sin, atan2, sqrt
from typing import Optional

EARTH_RADIUS_METERS = 6371000


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    phi1 = radians(float(lat1))
    phi2 = radians(float(lat2))
    dphi = radians(float(lat2) - float(lat1))
    dlambda = radians(float(lon2) - float(lon1))

    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def is_valid_coordinate(lat, lon) -> bool:
    """True when lat/lon are finite numbers inside the WGS84 ranges."""
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def safe_distance(lat1, lon1, lat2, lon2) -> Optional[float]:
    """
    Distance in meters, or None when either point is missing or invalid.

    Used where a bad row must not break a whole listing (e.g. ranking).
    """
    if not is_valid_coordinate(lat1, lon1) or not is_valid_coordinate(lat2, lon2):
        return None
    return calculate_distance(lat1, lon1, lat2, lon2)
