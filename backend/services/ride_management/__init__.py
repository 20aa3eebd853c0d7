"""
Ride management service - Core ride lifecycle operations.

This module handles:
    - Creating ride requests (with fare estimation)
    - Accepting rides
    - Completing rides (with wallet settlement)
    - Cancelling rides
    - Querying and subscribing to rides

The operations live in ride_lifecycle and are imported from there directly
(`from services.ride_management import ride_lifecycle`); only the error
taxonomy is re-exported here, since the store and wallet layers import it.
"""

from .exceptions import (
    RideError,
    ValidationError,
    PreconditionFailed,
    TransportError,
    SettlementError,
)

__all__ = [
    "RideError",
    "ValidationError",
    "PreconditionFailed",
    "TransportError",
    "SettlementError",
]
