"""
Rank pending rides for a driver.

Closest pickup first. Rides whose distance cannot be computed (missing or
invalid coordinates) go last, keeping their incoming order.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from common.utils import safe_distance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedRide:
    ride: Any
    distance_meters: Optional[float]


def _pickup_of(ride):
    if isinstance(ride, dict):
        return ride.get("pickup_latitude"), ride.get("pickup_longitude")
    return getattr(ride, "pickup_latitude", None), getattr(ride, "pickup_longitude", None)


def rank_rides_by_distance(rides: Iterable[Any], latitude: float, longitude: float) -> List[RankedRide]:
    """
    Sort rides by great-circle distance from the driver to each pickup.

    Args:
        rides: Ride instances or row dicts with pickup_latitude/pickup_longitude
        latitude: Driver latitude
        longitude: Driver longitude

    Returns:
        List of RankedRide, closest first, indeterminate distances last
    """
    ranked = []
    for ride in rides:
        pickup_lat, pickup_lon = _pickup_of(ride)
        ranked.append(RankedRide(ride, safe_distance(latitude, longitude, pickup_lat, pickup_lon)))

    # list.sort is stable, so ties and the unknown tail keep input order
    ranked.sort(key=lambda item: (item.distance_meters is None, item.distance_meters or 0.0))

    unknown = sum(1 for item in ranked if item.distance_meters is None)
    if unknown:
        logger.debug("Ranked %d rides, %d with unknown distance", len(ranked), unknown)
    return ranked
