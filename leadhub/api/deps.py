"""Request dependencies shared by the API routers."""

from fastapi import Depends, Header

from leadhub.auth import Actor, ensure_role, resolve_actor
from leadhub.crm.service import CRMService, get_crm_service
from leadhub.errors import AuthenticationError
from leadhub.storage.models import UserRole


def crm_service() -> CRMService:
    return get_crm_service()


def current_actor(
    x_user_id: str | None = Header(default=None, description="Acting user id"),
    service: CRMService = Depends(crm_service),
) -> Actor:
    """Resolve the ``X-User-Id`` header into an Actor.

    Raises:
        AuthenticationError: If the header is missing or names an unknown
            or inactive user.
    """
    if x_user_id is None:
        return resolve_actor(service.store, None)
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise AuthenticationError("Invalid credentials") from None
    return resolve_actor(service.store, user_id)


def admin_actor(actor: Actor = Depends(current_actor)) -> Actor:
    """Current actor, which must be an administrator.

    Raises:
        PermissionDeniedError: If the actor is not an admin.
    """
    return ensure_role(actor, [UserRole.ADMIN])
