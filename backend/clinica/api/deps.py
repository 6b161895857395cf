"""FastAPI dependencies: bearer-token identity, store access and role gates."""

import logging
from typing import Annotated, Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinica.core.exceptions import AuthenticationError, AuthorizationError
from clinica.db.clinic_repository import ClinicRepository, get_clinic_repository
from clinica.db.supabase import SupabaseClient
from clinica.onboarding.models import ADMIN_ROLE

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

Repository = Annotated[ClinicRepository, Depends(get_clinic_repository)]


def _unauthorized(detail: str) -> HTTPException:
    error = AuthenticationError(detail)
    return HTTPException(
        status_code=error.status_code,
        detail=error.message,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Any:
    """Resolve the caller from a bearer token via the store's auth API.

    Returns:
        The store's user object; ``id`` and ``email`` are what the
        onboarding routes read.

    Raises:
        HTTPException: 401 when the token is missing, unknown or cannot
            be checked.
        DatabaseError: When the store client cannot be built.
    """
    if credentials is None:
        raise _unauthorized("Authentication required")

    client = SupabaseClient.get_client()
    try:
        response = client.auth.get_user(credentials.credentials)
    except Exception as e:
        logger.warning("Token validation failed: %s", e)
        raise _unauthorized("Could not validate credentials") from e

    if response is None or response.user is None:
        raise _unauthorized("Invalid authentication token")

    logger.debug("Token validated", extra={"user_id": response.user.id})
    return response.user


async def _active_roles(repository: ClinicRepository, user_id: str) -> set[str]:
    """Role kinds from the caller's active ``user_roles`` rows."""
    rows = await repository.list_roles(user_id)
    return {row.get("role") for row in rows if row.get("active", True)}


def require_role(required_roles: list[str]) -> Any:
    """Dependency factory letting through callers holding any of ``required_roles``."""

    async def role_checker(
        current_user: Annotated[Any, Depends(get_current_user)],
        repository: Repository,
    ) -> Any:
        try:
            held = await _active_roles(repository, current_user.id)
        except Exception as e:
            logger.exception("Role lookup failed", extra={"user_id": current_user.id})
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error checking permissions",
            ) from e

        if held.isdisjoint(required_roles):
            error = AuthorizationError("Insufficient permissions for this action")
            logger.info(
                "Role check refused",
                extra={"user_id": current_user.id, "required": required_roles},
            )
            raise HTTPException(status_code=error.status_code, detail=error.message)

        return current_user

    return role_checker


CurrentUser = Annotated[Any, Depends(get_current_user)]
AdminUser = Annotated[Any, Depends(require_role([ADMIN_ROLE]))]
