"""Base WebSocket consumer: session setup, group bookkeeping, message dispatch."""

import logging
from typing import Any, Dict, Iterable, Optional, Set

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from services.session import Session

logger = logging.getLogger(__name__)

# Close code sent to connections without an authenticated user
UNAUTHENTICATED_CLOSE_CODE = 4401


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Authenticated JSON consumer acting on behalf of one Session.

    Incoming {"type": "<name>", ...} messages are dispatched to
    `handle_<name>(data)`; subclasses add handlers by defining those methods.
    """

    session: Optional[Session] = None

    async def connect(self):
        user = self.scope.get("user")
        if user is None or user.is_anonymous:
            logger.info("Rejected unauthenticated WebSocket connection")
            await self.close(code=UNAUTHENTICATED_CLOSE_CODE)
            return

        self.session = Session.from_user(user)
        self.user_id = self.session.actor_id
        self.role = self.session.role
        self.joined_groups: Set[str] = set()

        await self.accept()
        await self.on_connect()

    async def on_connect(self):
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
        })

    async def disconnect(self, close_code):
        for group in list(getattr(self, "joined_groups", ())):
            await self._leave_group(group)
        logger.debug("Actor %s disconnected (%s)", getattr(self, "user_id", None), close_code)

    async def receive_json(self, data: Dict[str, Any]):
        msg_type = data.get("type") if isinstance(data, dict) else None
        if not msg_type:
            await self.send_error("Message type is required", code="validation_error")
            return

        try:
            await self.route_message(msg_type, data)
        except Exception:
            logger.exception("Error handling %s from actor %s", msg_type, self.user_id)
            await self.send_error(f"Error processing {msg_type}")

    async def route_message(self, msg_type: str, data: Dict[str, Any]):
        handler = getattr(self, f"handle_{msg_type}", None)
        if handler is None:
            await self.send_error(f"Unknown message type: {msg_type}", code="validation_error")
            return
        await handler(data)

    # ---------------------- Groups ----------------------

    async def _join_group(self, group_name: str):
        await self.channel_layer.group_add(group_name, self.channel_name)
        self.joined_groups.add(group_name)

    async def _leave_group(self, group_name: str):
        await self.channel_layer.group_discard(group_name, self.channel_name)
        self.joined_groups.discard(group_name)

    # ---------------------- Responses ----------------------

    async def send_error(self, message: str, code: Optional[str] = None):
        payload = {"type": "error", "message": message}
        if code:
            payload["code"] = code
        await self.send_json(payload)

    async def send_success(self, event_type: str, **kwargs):
        await self.send_json({"type": event_type, **kwargs})

    async def send_rides(self, event_type: str, rides: Iterable[Dict[str, Any]], **kwargs):
        """Push a full ride list. Clients replace their copy, never merge."""
        rides = list(rides)
        await self.send_json({"type": event_type, "count": len(rides), "rides": rides, **kwargs})
