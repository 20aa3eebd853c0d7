"""
Suppression policy for driver position samples.

A driver's candidate list is re-ranked only when the driver moved far enough
or enough time passed since the last ranking. Mirrors the location stream
cadence (every 5 s or 10 m).
"""

import time
from typing import Callable, Optional, Tuple

from django.conf import settings

from common.utils import safe_distance

DEFAULT_MIN_DISTANCE_METERS = 10
DEFAULT_MIN_INTERVAL_SECONDS = 5


class RerankPolicy:
    """Tracks the last ranked position for one driver connection."""

    def __init__(
        self,
        min_distance_meters: Optional[float] = None,
        min_interval_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_distance_meters is None:
            min_distance_meters = getattr(
                settings, "RIDES_RERANK_MIN_DISTANCE_METERS", DEFAULT_MIN_DISTANCE_METERS
            )
        if min_interval_seconds is None:
            min_interval_seconds = getattr(
                settings, "RIDES_RERANK_MIN_INTERVAL_SECONDS", DEFAULT_MIN_INTERVAL_SECONDS
            )
        self.min_distance_meters = float(min_distance_meters)
        self.min_interval_seconds = float(min_interval_seconds)
        self._clock = clock
        self._last_position: Optional[Tuple[float, float]] = None
        self._last_ranked_at: Optional[float] = None

    @property
    def last_position(self) -> Optional[Tuple[float, float]]:
        return self._last_position

    def should_rerank(self, latitude: float, longitude: float) -> bool:
        """True if this sample should trigger a re-rank. Records it when so."""
        now = self._clock()

        if self._last_position is None or self._last_ranked_at is None:
            self._mark(latitude, longitude, now)
            return True

        if now - self._last_ranked_at >= self.min_interval_seconds:
            self._mark(latitude, longitude, now)
            return True

        moved = safe_distance(self._last_position[0], self._last_position[1], latitude, longitude)
        if moved is not None and moved > self.min_distance_meters:
            self._mark(latitude, longitude, now)
            return True

        return False

    def _mark(self, latitude: float, longitude: float, now: float) -> None:
        self._last_position = (float(latitude), float(longitude))
        self._last_ranked_at = now
