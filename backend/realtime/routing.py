"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.ride_changes import RideChangesConsumer

websocket_urlpatterns = [
    # Ride change subscriptions for riders and drivers
    # URL: ws://localhost:8000/ws/rides/?token=<jwt>
    re_path(
        r"ws/rides/$",
        RideChangesConsumer.as_asgi(),
        name="rides-ws"
    ),
]
