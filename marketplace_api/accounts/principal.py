from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from django.conf import settings

from .models import Role


SYSTEM_ACTOR_ID = 'system'


@dataclass(frozen=True)
class Principal:
    """
    The authenticated caller of a service operation.

    Services receive a principal explicitly instead of reading an ambient
    session. ``id`` is ``None`` only for the system principal used by
    external triggers such as payment confirmation or auto-release jobs.
    """
    id: Optional[int]
    email: str = ''
    roles: FrozenSet[Role] = field(default_factory=frozenset)

    @classmethod
    def from_user(cls, user):
        roles = {Role(value) for value in (user.roles or [])}
        if user.is_staff or user.groups.filter(name=settings.ADMIN_GROUP_NAME).exists():
            roles.add(Role.ADMIN)
        return cls(id=user.pk, email=user.email, roles=frozenset(roles))

    @classmethod
    def system(cls):
        return cls(id=None, email='', roles=frozenset({Role.SYSTEM}))

    @property
    def actor_id(self) -> str:
        return SYSTEM_ACTOR_ID if self.id is None else str(self.id)
