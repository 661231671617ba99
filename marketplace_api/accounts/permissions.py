from rest_framework import permissions

from . import guards
from .principal import Principal


def get_principal(request):
    """Build (once per request) the principal for the authenticated user."""
    principal = getattr(request, '_principal', None)
    if principal is None:
        principal = Principal.from_user(request.user)
        request._principal = principal
    return principal


class IsAdministrator(permissions.BasePermission):
    """
    Allows access only to administrators (staff, the administrators group or the admin role).
    """
    message = "Administrator access required."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return guards.is_admin(get_principal(request))


class IsSystemOrAdministrator(permissions.BasePermission):
    """
    Allows access to service accounts holding the system role and to administrators.
    """
    message = "System or administrator access required."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        principal = get_principal(request)
        return guards.is_system(principal) or guards.is_admin(principal)


class IsPartyOrAdministrator(permissions.BasePermission):
    """
    Object-level check: the buyer, the seller or an administrator.
    """
    message = "Not authorised to access this record."

    def has_object_permission(self, request, view, obj):
        return guards.can_view(get_principal(request), obj)
