"""
In-process change notification for ride rows.

Writers (rides.store.RideStore) publish a RideChange after each committed
insert/update/delete; subscribers registered with a filter receive the
changes that match it. Delivery may overlap with polling, so consumers should
refetch and replace their list rather than patch it.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

FILTERABLE_FIELDS = ("id", "status", "rider_id", "driver_id")
ID_FIELDS = ("id", "rider_id", "driver_id")

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass(frozen=True)
class RideChange:
    """A single row change. `new` is None for deletes, `old` is None for inserts."""
    event: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    @property
    def record(self) -> Dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})

    def as_payload(self) -> Dict[str, Any]:
        return {"event": self.event, "new": self.new, "old": self.old}


def validate_filter(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Return a copy of filters, rejecting columns that cannot be subscribed to.

    Id columns are coerced to int; anything else there raises ValueError.
    """
    if filters is not None and not isinstance(filters, dict):
        raise ValueError("Ride change filter must be an object")
    filters = dict(filters or {})
    unknown = set(filters) - set(FILTERABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot filter ride changes on: {', '.join(sorted(unknown))}")

    for key in ID_FIELDS:
        if key not in filters:
            continue
        value = filters[key]
        if isinstance(value, bool) or not str(value).isdigit():
            raise ValueError(f"{key} must be a positive integer")
        filters[key] = int(value)
    return filters


def _matches_record(filters: Dict[str, Any], record: Optional[Dict[str, Any]]) -> bool:
    if not record:
        return False
    return all(
        key in record and str(record[key]) == str(value)
        for key, value in filters.items()
    )


def change_matches(filters: Dict[str, Any], change: RideChange) -> bool:
    """
    A change matches when either side of it matches the filter, so a
    `status=pending` subscriber also hears about the ride leaving that state.
    """
    if not filters:
        return True
    return _matches_record(filters, change.new) or _matches_record(filters, change.old)


@dataclass(eq=False)
class Subscription:
    """Handle returned by subscribe(); call unsubscribe() when done."""
    id: int
    filters: Dict[str, Any]
    callback: Callable[[RideChange], None]
    hub: "RideChangeHub" = field(repr=False)
    active: bool = True

    def unsubscribe(self) -> None:
        if self.active:
            self.hub.remove(self)
            self.active = False


class RideChangeHub:
    """Registry of in-process ride change subscribers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subscriptions: Dict[int, Subscription] = {}

    def subscribe(self, filters: Optional[Dict[str, Any]], callback: Callable[[RideChange], None]) -> Subscription:
        subscription = Subscription(
            id=next(self._ids),
            filters=validate_filter(filters),
            callback=callback,
            hub=self,
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        logger.debug("Subscription %s added with filter %s", subscription.id, subscription.filters)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.pop(subscription.id, None)
        logger.debug("Subscription %s removed", subscription.id)

    def publish(self, change: RideChange) -> int:
        """Deliver change to every matching subscriber. Returns delivery count."""
        with self._lock:
            subscriptions: List[Subscription] = list(self._subscriptions.values())

        delivered = 0
        for subscription in subscriptions:
            if not change_matches(subscription.filters, change):
                continue
            try:
                subscription.callback(change)
                delivered += 1
            except Exception:
                logger.exception(
                    "Ride change subscriber %s failed on %s", subscription.id, change.event
                )
        return delivered

    def __len__(self):
        with self._lock:
            return len(self._subscriptions)


_hub = RideChangeHub()


def get_ride_change_hub() -> RideChangeHub:
    return _hub
