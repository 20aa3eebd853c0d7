"""Common utility functions."""

from .geo import EARTH_RADIUS_METERS, calculate_distance, is_valid_coordinate, safe_distance

__all__ = [
    "EARTH_RADIUS_METERS",
    "calculate_distance",
    "is_valid_coordinate",
    "safe_distance",
]
