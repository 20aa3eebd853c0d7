"""Fare estimation from pickup/destination."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from django.conf import settings

from common.utils import calculate_distance

DEFAULT_PRICE_PER_METER = 2

Coordinate = Tuple[float, float]


@dataclass(frozen=True)
class FareEstimate:
    distance_meters: float
    distance_km: float
    price: Decimal


def get_price_per_meter():
    return getattr(settings, "RIDE_PRICE_PER_METER", DEFAULT_PRICE_PER_METER)


def estimate_fare(pickup: Coordinate, destination: Coordinate, rate: Optional[float] = None) -> FareEstimate:
    """
    Price a trip. price = round(distance_meters * rate).

    Computed once when the ride is created; the stored value is never
    recalculated.
    """
    if rate is None:
        rate = get_price_per_meter()

    distance_meters = calculate_distance(pickup[0], pickup[1], destination[0], destination[1])
    price = round(distance_meters * float(rate))
    return FareEstimate(
        distance_meters=distance_meters,
        distance_km=distance_meters / 1000,
        price=Decimal(price),
    )
