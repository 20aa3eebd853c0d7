"""Celery tasks for ride-related background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def publish_pending_snapshot():
    """
    Push the full list of pending rides to drivers watching them.

    Scheduled by celery beat every RIDES_PENDING_REFRESH_SECONDS. Drivers
    replace their list with each snapshot, which repairs anything missed or
    reordered on the change stream.
    """
    from rides.models import Ride
    from rides.serializers import RideSerializer
    from rides.store import RideStore
    from realtime.broadcast import broadcast_pending_snapshot

    rides = RideStore().select({"status": Ride.Status.PENDING})
    payload = list(RideSerializer(rides, many=True).data)
    sent = broadcast_pending_snapshot(payload)

    logger.info("Published pending snapshot with %d rides to %d groups", len(payload), sent)
    return len(payload)
