"""
Role-based access control (RBAC).

The identity collaborator supplies an Actor for every call; the lifecycle
services perform their own role checks against it (e.g. only admins decide
extension requests).  require_role() guards whole endpoints.

Usage:
    @router.post("/snapshots")
    async def compute(actor: Actor = Depends(require_role(ROLE_ADMIN))):
        ...
"""
import uuid
from dataclasses import dataclass

from fastapi import Depends

from grievance.core.errors import Forbidden
from grievance.core.security import get_current_user

ROLE_ADMIN = "admin"
ROLE_OFFICER = "officer"
ROLE_CITIZEN = "citizen"
ROLES = (ROLE_ADMIN, ROLE_OFFICER, ROLE_CITIZEN)


@dataclass(frozen=True)
class Actor:
    id: uuid.UUID | None
    role: str
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_officer(self) -> bool:
        return self.role == ROLE_OFFICER

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, role=user.role, name=user.full_name)


SYSTEM_ACTOR = Actor(id=None, role="system", name="scheduler")


def ensure_role(actor: Actor, *roles: str, action: str = "perform this action") -> None:
    if actor.role not in roles:
        raise Forbidden(f"Role '{actor.role}' may not {action}; requires one of {list(roles)}")


async def get_current_actor(current_user=Depends(get_current_user)) -> Actor:
    return Actor.from_user(current_user)


def require_role(*roles: str):
    """
    Dependency factory that enforces the caller's role is in *roles.
    Accepts any authenticated user when called with no role arguments.
    """

    async def _check_role(actor: Actor = Depends(get_current_actor)) -> Actor:
        if roles:
            ensure_role(actor, *roles)
        return actor

    return _check_role
