"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - ride_management: Core ride lifecycle operations
    - matching: Proximity ranking of pending rides for drivers
    - session: Explicit acting-user session passed into every service call
"""

from .matching import RankedRide, RerankPolicy, rank_rides_by_distance
from .session import Session

__all__ = [
    "RankedRide",
    "RerankPolicy",
    "rank_rides_by_distance",
    "Session",
]
