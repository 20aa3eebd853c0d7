"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .ride_changes import RideChangesConsumer

__all__ = [
    "BaseConsumer",
    "RideChangesConsumer",
]
