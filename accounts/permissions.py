from rest_framework import permissions

from .models import User


class IsAdmin(permissions.BasePermission):
    """Authenticated principal with the admin role."""

    message = 'Forbidden: insufficient permissions'

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.role == User.Role.ADMIN)


class IsAdminOrUser(permissions.BasePermission):
    message = 'Forbidden: insufficient permissions'

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.role in User.Role.values)
