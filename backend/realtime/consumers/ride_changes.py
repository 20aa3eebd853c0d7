"""Ride change WebSocket consumer (realtime view of the rides table)."""

import logging
from typing import Any, Dict, List, Optional

from channels.db import database_sync_to_async

from rides.serializers import LocationSerializer, RankedRideSerializer, RideSerializer
from services.matching import RerankPolicy, rank_rides_by_distance
from services.ride_management import ride_lifecycle
from realtime.broadcast import group_for_filter
from realtime.hub import validate_filter
from .base import BaseConsumer

logger = logging.getLogger(__name__)


class RideChangesConsumer(BaseConsumer):
    """
    WebSocket consumer for ride changes.

    Client messages:
        {"type": "subscribe", "filter": {"status": "pending"}}
        {"type": "unsubscribe", "filter": {"status": "pending"}}
        {"type": "location_update", "latitude": ..., "longitude": ...}   (drivers)

    Server messages:
        ride_change       one row changed (event, new, old)
        rides_snapshot    full list for a subscription, replaces the client's copy
        pending_rides     ranked pending list for a driver, replaces the client's copy
    """

    async def on_connect(self):
        self.subscribed_filters: Dict[str, Dict[str, Any]] = {}
        self.rerank_policy = RerankPolicy()
        self.position: Optional[tuple] = None

        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "message": "Ride updates connection established",
        })

    # ---------------------- Message Handlers ----------------------

    async def handle_subscribe(self, data: Dict[str, Any]):
        try:
            filters = validate_filter(data.get("filter"))
            group = group_for_filter(filters)
        except ValueError as exc:
            await self.send_error(str(exc), code="validation_error")
            return

        if not await self._may_subscribe(filters):
            await self.send_error("You are not allowed to subscribe to these rides", code="forbidden")
            return

        await self._join_group(group)
        self.subscribed_filters[group] = filters
        await self.send_success("subscribed", filter=filters)

        # Start from an authoritative snapshot, never from local state
        await self._send_snapshot(filters)

    async def handle_unsubscribe(self, data: Dict[str, Any]):
        try:
            group = group_for_filter(validate_filter(data.get("filter")))
        except ValueError as exc:
            await self.send_error(str(exc), code="validation_error")
            return

        await self._leave_group(group)
        filters = self.subscribed_filters.pop(group, None)
        await self.send_success("unsubscribed", filter=filters or data.get("filter"))

    async def handle_location_update(self, data: Dict[str, Any]):
        if self.role != "driver":
            await self.send_error("Only drivers can send location updates", code="forbidden")
            return

        location = LocationSerializer(data=data)
        if not location.is_valid():
            await self.send_error(
                "location_update requires a valid latitude and longitude",
                code="validation_error",
            )
            return

        self.position = (location.validated_data["latitude"], location.validated_data["longitude"])
        if self.rerank_policy.should_rerank(*self.position):
            await self._send_ranked_pending()

    # ---------------------- Event Handlers (from group_send) ----------------------

    async def ride_change(self, event):
        """Forward a committed ride change."""
        await self.send_json({
            "type": "ride_change",
            "event": event.get("event"),
            "new": event.get("new"),
            "old": event.get("old"),
        })

        if self._watching_pending() and self.position is not None:
            await self._send_ranked_pending()

    async def pending_rides_snapshot(self, event):
        """Periodic authoritative pending list (see rides.tasks)."""
        rides: List[Dict[str, Any]] = event.get("rides", [])
        if self.position is None:
            await self.send_rides("rides_snapshot", rides, filter={"status": "pending"})
            return

        ranked = rank_rides_by_distance(rides, *self.position)
        await self.send_rides(
            "pending_rides",
            ({"ride": item.ride, "distance_meters": item.distance_meters} for item in ranked),
        )

    # ---------------------- Helpers ----------------------

    def _watching_pending(self) -> bool:
        return any(f.get("status") == "pending" for f in self.subscribed_filters.values())

    async def _send_snapshot(self, filters: Dict[str, Any]):
        if filters.get("status") == "pending" and self.position is not None:
            await self._send_ranked_pending()
            return
        rides = await self._load_rides(filters)
        await self.send_rides("rides_snapshot", rides, filter=filters)

    async def _send_ranked_pending(self):
        rides = await self._load_ranked_pending(*self.position)
        await self.send_rides("pending_rides", rides)

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _may_subscribe(self, filters: Dict[str, Any]) -> bool:
        """Riders see their own rides; drivers see pending rides and their own."""
        from rides.models import Ride

        (key, value), = filters.items()
        if key == "rider_id":
            return str(value) == str(self.user_id)
        if key == "driver_id":
            return self.role == "driver" and str(value) == str(self.user_id)
        if key == "status":
            return self.role == "driver" and value == Ride.Status.PENDING
        if key == "id":
            ride = Ride.objects.filter(id=value).values("rider_id", "driver_id", "status").first()
            if ride is None:
                return False
            if self.user_id in (ride["rider_id"], ride["driver_id"]):
                return True
            return self.role == "driver" and ride["status"] == Ride.Status.PENDING
        return False

    @database_sync_to_async
    def _load_rides(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        from rides.store import RideStore

        rides = RideStore(self.session).select(filters)
        return list(RideSerializer(rides, many=True).data)

    @database_sync_to_async
    def _load_ranked_pending(self, lat: float, lon: float) -> List[Dict[str, Any]]:
        result = ride_lifecycle.list_available_rides(self.session, lat, lon)
        if not result.success:
            logger.warning("Could not rank pending rides for driver %s: %s", self.user_id, result.message)
            return []
        return list(RankedRideSerializer(result.rides, many=True).data)
