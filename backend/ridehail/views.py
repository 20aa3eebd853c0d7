import logging

import redis
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import connection
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from ridehail.celery import app as celery_app
from rides.tasks import publish_pending_snapshot

logger = logging.getLogger(__name__)


def _check_database():
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")


def _check_redis():
    redis.Redis.from_url(settings.REDIS_URL, socket_timeout=3).ping()


def _check_channel_layer():
    if get_channel_layer() is None:
        raise RuntimeError("no channel layer configured")


def _check_celery():
    if publish_pending_snapshot.name not in celery_app.tasks:
        raise RuntimeError("pending snapshot task not registered")


CHECKS = (
    ("database", _check_database),
    ("redis", _check_redis),
    ("channels", _check_channel_layer),
    ("celery", _check_celery),
)


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Report whether the database, redis, channel layer and task registry respond"""
    services = {}
    healthy = True

    for name, check in CHECKS:
        try:
            check()
            services[name] = "healthy"
        except Exception as exc:
            logger.warning("Health check %s failed: %s", name, exc)
            services[name] = f"unhealthy: {exc}"
            healthy = False

    return Response(
        {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": timezone.now().isoformat(),
            "services": services,
        },
        status=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
