"""
Ride Store: the only way ride rows are read or written.

All writes go through insert/update/delete so that change notifications are
published consistently. update() is a conditional write: the filters are part
of the UPDATE statement's WHERE clause, and the rows it returns are the rows
actually modified. An empty list means the precondition did not hold.
"""

import logging
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional

from django.db import DatabaseError, IntegrityError, transaction

from realtime.broadcast import publish_ride_change
from realtime.hub import DELETE, INSERT, UPDATE, RideChange, Subscription, get_ride_change_hub
from services.ride_management.exceptions import TransportError, ValidationError

from .models import Ride
from .serializers import ride_to_row

logger = logging.getLogger(__name__)

DEFAULT_ORDERING = ("-created_at", "-id")


class RideStore:
    """
    Table-style access to rides.

    Args:
        session: Acting session, used for log context only. Authorization is
            expressed by the caller through filters (e.g. rider_id=...).
    """

    def __init__(self, session=None):
        self.session = session

    @property
    def _actor(self):
        return getattr(self.session, "actor_id", None)

    # ---------------------- Reads ----------------------

    def select(self, filters: Optional[Dict[str, Any]] = None, order_by: Iterable[str] = DEFAULT_ORDERING) -> List[Ride]:
        try:
            return list(Ride.objects.filter(**(filters or {})).order_by(*order_by))
        except DatabaseError as exc:
            logger.error("Ride select failed (actor=%s, filters=%s): %s", self._actor, filters, exc)
            raise TransportError("Could not load rides") from exc

    def get(self, ride_id) -> Optional[Ride]:
        rows = self.select({"id": ride_id})
        return rows[0] if rows else None

    def select_for_update(self, filters: Dict[str, Any]) -> Optional[Ride]:
        """Lock and return the first ride matching filters. Must run inside transaction.atomic()."""
        try:
            return Ride.objects.select_for_update().filter(**filters).order_by(*DEFAULT_ORDERING).first()
        except DatabaseError as exc:
            logger.error("Ride lock failed (actor=%s, filters=%s): %s", self._actor, filters, exc)
            raise TransportError("Could not load ride") from exc

    # ---------------------- Writes ----------------------

    def insert(self, row: Dict[str, Any]) -> Ride:
        try:
            with transaction.atomic():
                ride = Ride.objects.create(**row)
                change = RideChange(event=INSERT, new=ride_to_row(ride))
                transaction.on_commit(partial(self._publish, [change]))
        except IntegrityError as exc:
            logger.warning("Ride insert rejected (actor=%s): %s", self._actor, exc)
            raise ValidationError("Ride data violates a table constraint") from exc
        except DatabaseError as exc:
            logger.error("Ride insert failed (actor=%s): %s", self._actor, exc)
            raise TransportError("Could not create ride") from exc

        logger.info("Ride %s inserted by actor %s", ride.id, self._actor)
        return ride

    def update(self, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Ride]:
        """
        Apply values to every ride matching filters.

        Returns:
            The modified rides; empty when no row satisfied the filters
        """
        if not filters:
            raise ValueError("update() requires at least one filter")
        frozen = set(values) & Ride.IMMUTABLE_FIELDS
        if frozen:
            raise ValueError(f"Fields are immutable after creation: {', '.join(sorted(frozen))}")

        try:
            with transaction.atomic():
                # Lock candidates so the returned rows are exactly the ones updated
                old_rows = {
                    ride.pk: ride_to_row(ride)
                    for ride in Ride.objects.select_for_update().filter(**filters)
                }
                if not old_rows:
                    return []

                updated = Ride.objects.filter(pk__in=list(old_rows), **filters).update(**values)
                if not updated:
                    return []

                rides = list(Ride.objects.filter(pk__in=list(old_rows)).order_by(*DEFAULT_ORDERING))
                changes = [
                    RideChange(event=UPDATE, new=ride_to_row(ride), old=old_rows[ride.pk])
                    for ride in rides
                ]
                transaction.on_commit(partial(self._publish, changes))
        except IntegrityError as exc:
            logger.warning("Ride update rejected (actor=%s, filters=%s): %s", self._actor, filters, exc)
            raise ValidationError("Ride update violates a table constraint") from exc
        except DatabaseError as exc:
            logger.error("Ride update failed (actor=%s, filters=%s): %s", self._actor, filters, exc)
            raise TransportError("Could not update ride") from exc

        return rides

    def delete(self, filters: Dict[str, Any]) -> List[Ride]:
        if not filters:
            raise ValueError("delete() requires at least one filter")

        try:
            with transaction.atomic():
                rides = list(Ride.objects.select_for_update().filter(**filters))
                changes = [RideChange(event=DELETE, old=ride_to_row(ride)) for ride in rides]
                Ride.objects.filter(pk__in=[ride.pk for ride in rides]).delete()
                transaction.on_commit(partial(self._publish, changes))
        except DatabaseError as exc:
            logger.error("Ride delete failed (actor=%s, filters=%s): %s", self._actor, filters, exc)
            raise TransportError("Could not delete rides") from exc

        return rides

    # ---------------------- Notifications ----------------------

    def subscribe(self, filters: Optional[Dict[str, Any]], on_change: Callable[[RideChange], None]) -> Subscription:
        """
        Register on_change for inserts/updates/deletes matching filters.

        Filters are equality matches on id, status, rider_id or driver_id.
        Call unsubscribe() on the returned handle when done.
        """
        return get_ride_change_hub().subscribe(filters, on_change)

    @staticmethod
    def _publish(changes: List[RideChange]) -> None:
        for change in changes:
            publish_ride_change(change)
