"""
Channel-layer fan-out for ride changes.

Every committed ride change is pushed to the WebSocket groups that may care
about it:

    ride_<id>                  anyone tracking a single ride
    rides_status_<status>      old and new status (drivers watch "pending")
    rides_rider_<rider_id>     the owning rider
    rides_driver_<driver_id>   the assigned driver (old and new)

In-process subscribers (realtime.hub) are notified from the same entry point.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Set

from channels.layers import get_channel_layer
from asgiref.sync import async_to_sync

from .hub import RideChange, get_ride_change_hub

logger = logging.getLogger(__name__)


def ride_group(ride_id) -> str:
    return f"ride_{ride_id}"


def status_group(status: str) -> str:
    return f"rides_status_{status}"


def rider_group(rider_id) -> str:
    return f"rides_rider_{rider_id}"


def driver_group(driver_id) -> str:
    return f"rides_driver_{driver_id}"


def group_for_filter(filters: Dict[str, Any]) -> str:
    """Map a single-column subscription filter to its channel group."""
    if len(filters) != 1:
        raise ValueError("WebSocket subscriptions take exactly one filter column")
    (key, value), = filters.items()
    if key == "id":
        return ride_group(value)
    if key == "status":
        return status_group(value)
    if key == "rider_id":
        return rider_group(value)
    if key == "driver_id":
        return driver_group(value)
    raise ValueError(f"Cannot subscribe on column {key}")


def groups_for_change(change: RideChange) -> List[str]:
    groups: Set[str] = set()
    for record in (change.new, change.old):
        if not record:
            continue
        if record.get("id") is not None:
            groups.add(ride_group(record["id"]))
        if record.get("status"):
            groups.add(status_group(record["status"]))
        if record.get("rider_id") is not None:
            groups.add(rider_group(record["rider_id"]))
        if record.get("driver_id") is not None:
            groups.add(driver_group(record["driver_id"]))
    return sorted(groups)


def _group_send(groups: Iterable[str], message: Dict[str, Any]) -> int:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer available for ride broadcast")
        return 0

    sent = 0
    for group in groups:
        try:
            async_to_sync(channel_layer.group_send)(group, message)
            sent += 1
        except Exception:
            logger.exception("Failed to send %s to group %s", message.get("type"), group)
    return sent


def publish_ride_change(change: RideChange) -> Dict[str, int]:
    """
    Notify in-process subscribers and WebSocket groups of one ride change.

    Returns:
        Dict with delivery stats
    """
    delivered = get_ride_change_hub().publish(change)

    groups = groups_for_change(change)
    sent = _group_send(groups, {"type": "ride_change", **change.as_payload()})

    logger.debug(
        "Published %s for ride %s to %d subscribers and %d groups",
        change.event, change.record.get("id"), delivered, sent,
    )
    return {"subscribers": delivered, "groups": sent}


def broadcast_pending_snapshot(rides: List[Dict[str, Any]]) -> int:
    """Push the full pending list to drivers watching pending rides."""
    return _group_send(
        [status_group("pending")],
        {"type": "pending_rides_snapshot", "rides": rides, "count": len(rides)},
    )
