"""Actor context threaded through every domain mutation.

The session layer is an external collaborator; it hands us "current user id
and role". Mutations receive an explicit ``Actor`` (or None for
system-initiated changes) instead of reading ambient session state.
"""

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel

from leadhub.errors import AuthenticationError, PermissionDeniedError
from leadhub.storage.models import User, UserRole
from leadhub.storage.store import RecordStore

# Payload representation of a mutation nobody in particular triggered.
SYSTEM_ACTOR: dict[str, Any] = {"name": "system", "email": None, "role": "system"}


class Actor(BaseModel):
    """The user (or agent acting as a user) performing a mutation."""

    model_config = {"frozen": True}

    id: int
    name: str
    email: str | None = None
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, name=user.name, email=user.email, role=user.role)

    def to_payload(self) -> dict[str, Any]:
        """Actor fields exposed in webhook payloads."""
        return {"name": self.name, "email": self.email, "role": self.role.value}


def actor_payload(actor: Actor | None) -> dict[str, Any]:
    """Payload form of an actor, falling back to the system sentinel."""
    if actor is None:
        return dict(SYSTEM_ACTOR)
    return actor.to_payload()


def resolve_actor(store: RecordStore, user_id: int | None) -> Actor:
    """Resolve a user id from the session layer into an Actor.

    Args:
        store: Record store holding users.
        user_id: Current user id, or None when unauthenticated.

    Returns:
        Actor for the active user.

    Raises:
        AuthenticationError: If no user id was supplied or the user is
            unknown or inactive.
    """
    if user_id is None:
        raise AuthenticationError("Authentication required")
    user = store.users.get(user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("Invalid credentials")
    return Actor.from_user(user)


def ensure_role(actor: Actor, roles: Iterable[UserRole]) -> Actor:
    """Check that the actor holds one of the given roles.

    Raises:
        PermissionDeniedError: If the actor's role is not allowed.
    """
    allowed = tuple(roles)
    if actor.role not in allowed:
        raise PermissionDeniedError(
            "Insufficient permissions",
            required_roles=tuple(role.value for role in allowed),
        )
    return actor
