"""
Authorization predicates.

Pure functions over a ``Principal`` and a resource exposing ``buyer_id`` and
``seller_id`` (orders, escrow transactions, disputes). They perform no I/O;
services call them before touching state and turn a ``False`` into
``Unauthorized`` through ``require``.
"""
from marketplace_api.exceptions import Unauthorized

from .models import Role


def is_admin(principal) -> bool:
    return Role.ADMIN in principal.roles


def is_system(principal) -> bool:
    return Role.SYSTEM in principal.roles


def is_buyer(principal, resource) -> bool:
    return principal.id is not None and principal.id == resource.buyer_id


def is_seller(principal, resource) -> bool:
    return principal.id is not None and principal.id == resource.seller_id


def is_owner_or_admin(principal, resource) -> bool:
    return is_buyer(principal, resource) or is_seller(principal, resource) or is_admin(principal)


def can_view(principal, resource) -> bool:
    return is_owner_or_admin(principal, resource) or is_system(principal)


def can_mutate(principal, resource, allowed_statuses) -> bool:
    """Owner/admin check combined with a status precondition."""
    return can_view(principal, resource) and resource.status in allowed_statuses


def require(allowed: bool, message: str = None):
    if not allowed:
        raise Unauthorized(message)
