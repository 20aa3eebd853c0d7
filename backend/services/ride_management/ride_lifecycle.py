"""
Core ride lifecycle operations.

This module contains all the business logic for managing rides,
extracted from the views layer for better testability and reuse.

Every transition is a conditional update through RideStore:

    pending  -> accepted   accept_ride   (status = pending)
    accepted -> completed  complete_ride (status = accepted, driver = caller)
    pending  -> cancelled  cancel_ride   (status = pending, rider = caller)

An update that modifies no row means the ride is no longer in the expected
state (another driver won, the rider cancelled, ...) and is reported as
PreconditionFailed. Failures never escape as exceptions; every operation
returns a RideResult.
"""

import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple

from django.db import DatabaseError, transaction
from django.utils import timezone

from accounts import wallet
from common.utils import is_valid_coordinate
from rides.models import Ride
from rides.store import RideStore
from services.matching import rank_rides_by_distance
from services.session import Session
from .exceptions import (
    RideError,
    ValidationError,
    PreconditionFailed,
    TransportError,
    SettlementError,
)
from .pricing import estimate_fare

logger = logging.getLogger(__name__)

Status = Ride.Status

NO_LONGER_AVAILABLE = "This ride is no longer available"


@dataclass
class RideResult:
    """Result object for ride operations."""
    success: bool
    ride: Optional[Ride] = None
    rides: Optional[List[Any]] = None
    message: str = ""
    error_code: Optional[str] = None
    error: Optional[RideError] = None
    extra: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(cls, error: RideError) -> "RideResult":
        return cls(
            success=False,
            message=error.message,
            error_code=error.code,
            error=error,
        )


def _ride_operation(func):
    """Turn ride errors raised inside an operation into a failed RideResult."""

    @wraps(func)
    def wrapper(session: Session, *args, **kwargs) -> RideResult:
        try:
            return func(session, *args, **kwargs)
        except PreconditionFailed as exc:
            logger.info("%s precondition failed for actor %s: %s", func.__name__, session.actor_id, exc)
            return RideResult.failure(exc)
        except ValidationError as exc:
            logger.info("%s rejected input from actor %s: %s", func.__name__, session.actor_id, exc)
            return RideResult.failure(exc)
        except SettlementError as exc:
            logger.warning("%s settlement failed for actor %s: %s", func.__name__, session.actor_id, exc)
            return RideResult.failure(exc)
        except TransportError as exc:
            logger.error("%s transport failure for actor %s: %s", func.__name__, session.actor_id, exc)
            return RideResult.failure(exc)
        except DatabaseError as exc:
            logger.exception("%s database failure for actor %s", func.__name__, session.actor_id)
            return RideResult.failure(TransportError("Service temporarily unavailable"))

    return wrapper


def _coordinate(point, label: str) -> Tuple[float, float]:
    if point is None:
        raise ValidationError(f"{label} is required")
    try:
        lat, lon = point
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a (latitude, longitude) pair")
    if lat is None or lon is None:
        raise ValidationError(f"{label} is required")
    if not is_valid_coordinate(lat, lon):
        raise ValidationError(f"{label} has invalid coordinates")
    return float(lat), float(lon)


# ===================== Rider Operations =====================

@_ride_operation
def create_ride(
    session: Session,
    pickup,
    destination,
    destination_address: str = "",
) -> RideResult:
    """
    Create a new pending ride request.

    Args:
        session: Acting rider
        pickup: (latitude, longitude) of the rider
        destination: (latitude, longitude) chosen by the rider
        destination_address: Human-readable destination

    Returns:
        RideResult with the created ride; ValidationError if destination is unset
    """
    pickup = _coordinate(pickup, "Pickup location")
    destination = _coordinate(destination, "Destination")

    fare = estimate_fare(pickup, destination)

    ride = RideStore(session).insert({
        "rider_id": session.actor_id,
        "rider_email": session.email,
        "pickup_latitude": pickup[0],
        "pickup_longitude": pickup[1],
        "destination_latitude": destination[0],
        "destination_longitude": destination[1],
        "destination_address": destination_address or "Unknown address",
        "distance_km": fare.distance_km,
        "price": fare.price,
        "status": Status.PENDING,
    })

    logger.info(
        "Ride %s requested by %s (%.3f km, price %s)",
        ride.id, session.actor_id, fare.distance_km, fare.price,
    )
    return RideResult(
        success=True,
        ride=ride,
        message="Your ride has been requested! A driver will be with you shortly.",
        extra={"distance_meters": fare.distance_meters},
    )


@_ride_operation
def cancel_ride(session: Session, ride_id: int) -> RideResult:
    """Cancel a ride. Only the owning rider, only while pending."""
    rides = RideStore(session).update(
        {"status": Status.CANCELLED},
        {"id": ride_id, "status": Status.PENDING, "rider_id": session.actor_id},
    )
    if not rides:
        raise PreconditionFailed(NO_LONGER_AVAILABLE)

    logger.info("Ride %s cancelled by rider %s", ride_id, session.actor_id)
    return RideResult(success=True, ride=rides[0], message="Ride has been cancelled")


@_ride_operation
def list_rider_rides(session: Session) -> RideResult:
    """The rider's own rides, newest first."""
    rides = RideStore(session).select({"rider_id": session.actor_id})
    return RideResult(success=True, rides=rides)


def subscribe_to_rider_rides(session: Session, on_change):
    """Push notifications for the rider's own rides. Returns the Subscription."""
    return RideStore(session).subscribe({"rider_id": session.actor_id}, on_change)


# ===================== Driver Operations =====================

@_ride_operation
def list_available_rides(session: Session, latitude: float, longitude: float) -> RideResult:
    """
    Pending rides ranked by distance from the driver's position.

    The list is a fresh snapshot; callers replace whatever they held before.
    """
    pending = RideStore(session).select({"status": Status.PENDING})
    ranked = rank_rides_by_distance(pending, latitude, longitude)
    return RideResult(success=True, rides=ranked, extra={"count": len(ranked)})


def subscribe_to_pending_rides(session: Session, on_change):
    """Push notifications for rides entering or leaving the pending state."""
    return RideStore(session).subscribe({"status": Status.PENDING}, on_change)


@_ride_operation
def accept_ride(session: Session, ride_id: int) -> RideResult:
    """
    Claim a pending ride for the calling driver.

    A single conditional UPDATE decides the winner when several drivers race
    for the same ride; losers get PreconditionFailed and should refresh.
    """
    rides = RideStore(session).update(
        {
            "status": Status.ACCEPTED,
            "driver_id": session.actor_id,
            "accepted_at": timezone.now(),
        },
        {"id": ride_id, "status": Status.PENDING},
    )
    if not rides:
        raise PreconditionFailed(NO_LONGER_AVAILABLE)

    logger.info("Ride %s accepted by driver %s", ride_id, session.actor_id)
    return RideResult(success=True, ride=rides[0], message="Ride accepted successfully!")


@_ride_operation
def complete_ride(session: Session, ride_id: int) -> RideResult:
    """
    Complete a ride and charge the rider.

    The wallet is debited first; the ride is only marked completed if the
    debit succeeded. Both happen in one transaction, so a precondition
    failure on the ride row rolls the debit back.
    """
    store = RideStore(session)
    precondition = {"id": ride_id, "status": Status.ACCEPTED, "driver_id": session.actor_id}

    with transaction.atomic():
        ride = store.select_for_update(precondition)
        if ride is None:
            raise PreconditionFailed("Ride not found or not accepted by you")

        settlement = wallet.decrement_balance(ride.rider_id, ride.price, ride=ride)

        rides = store.update(
            {
                "status": Status.COMPLETED,
                "driver_id": session.actor_id,
                "completed_at": timezone.now(),
            },
            precondition,
        )
        if not rides:
            raise PreconditionFailed("Ride not found or not accepted by you")

    logger.info(
        "Ride %s completed by driver %s, rider %s charged %s",
        ride_id, session.actor_id, ride.rider_id, ride.price,
    )
    return RideResult(
        success=True,
        ride=rides[0],
        message="Ride completed successfully",
        extra={"rider_balance": settlement.new_balance},
    )


@_ride_operation
def get_current_driver_ride(session: Session) -> RideResult:
    """Get driver's current active ride."""
    rides = RideStore(session).select({
        "driver_id": session.actor_id,
        "status__in": [Status.ACCEPTED, Status.IN_PROGRESS],
    })
    return RideResult(success=True, ride=rides[0] if rides else None)
