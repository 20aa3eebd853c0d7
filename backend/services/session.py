"""
Explicit acting-user session.

Built once per request (or WebSocket connection) from the authenticated user
and passed into every service call. The id/email are treated as opaque.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Session:
    actor_id: int
    email: str = ""
    role: Optional[str] = None

    @classmethod
    def from_user(cls, user) -> "Session":
        return cls(
            actor_id=user.pk,
            email=getattr(user, "email", "") or "",
            role=getattr(user, "role", None),
        )

    @property
    def is_rider(self) -> bool:
        return self.role == "rider"

    @property
    def is_driver(self) -> bool:
        return self.role == "driver"
