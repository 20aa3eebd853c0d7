"""
Driver-side matching.

This module handles:
    - Ranking pending rides by distance from the driver
    - Deciding when a new driver position warrants a re-rank
"""

from .ranking import RankedRide, rank_rides_by_distance
from .rerank import RerankPolicy

__all__ = [
    "RankedRide",
    "rank_rides_by_distance",
    "RerankPolicy",
]
