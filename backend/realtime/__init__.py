"""
Realtime app: change notification for the rides table.

This app provides:
- An in-process subscription hub for ride inserts/updates/deletes
- Channel-layer fan-out of the same changes to WebSocket groups
- A WebSocket consumer riders and drivers subscribe through
- JWT authentication middleware for WebSocket connections

Key Components:
    - hub.py: RideChange, Subscription, in-process RideChangeHub
    - broadcast.py: publish_ride_change / broadcast_pending_snapshot
    - consumers/: RideChangesConsumer
    - middleware.py: JWTOrSessionAuthMiddleware

Usage:
    from realtime.broadcast import publish_ride_change
    from realtime.hub import get_ride_change_hub
"""
