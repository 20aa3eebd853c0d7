# accounts/permissions.py
from rest_framework.permissions import BasePermission


class _HasRole(BasePermission):
    role = None

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        return getattr(user, "role", None) == self.role


class IsRider(_HasRole):
    """Allows access only to users with role == 'rider'."""
    role = "rider"
    message = "Only riders can perform this action"


class IsDriver(_HasRole):
    """Allows access only to users with role == 'driver'."""
    role = "driver"
    message = "Only drivers can perform this action"
