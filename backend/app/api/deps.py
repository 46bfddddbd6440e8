"""API dependencies - authentication and authorization"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Callable, Optional

from app.core.container import AuthServices
from app.core.context import set_current_caller
from app.core.database import get_db
from app.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    NotAuthenticatedError,
    ResourceNotFoundError,
)
from app.models.user import User
from app.schemas.user import UserRole
from app.services.ownership_service import (
    CallerIdentity,
    ResourceKind,
    ResourceOwnershipAuthorizer,
    ResourceRef,
    SqlOwnershipLookups,
)
from app.services.user_service import user_service

# HTTP Bearer token scheme; missing credentials are reported as our own 401
security = HTTPBearer(auto_error=False)


def get_auth_services(request: Request) -> AuthServices:
    return request.app.state.auth_services


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Extract the bearer token from the Authorization header

    Raises:
        NotAuthenticatedError: If no bearer credential was sent
    """
    if credentials is None or not credentials.credentials:
        raise NotAuthenticatedError()
    return credentials.credentials


def get_authenticated_user(
    token: str = Depends(get_bearer_token),
    services: AuthServices = Depends(get_auth_services),
    db: Session = Depends(get_db),
) -> User:
    """
    Verify the access token and load the local user it was issued for

    Args:
        token: Bearer access token
        services: Auth service graph
        db: Database session

    Returns:
        Current user

    Raises:
        AuthenticationError: If the token is rejected or the user is gone or deleted
    """
    claims = services.access_verifier.verify(token)

    user = user_service.get_user_by_subject(db, claims["sub"])
    if not user:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("User account is disabled")
    return user


async def get_current_user(user: User = Depends(get_authenticated_user)) -> User:
    """
    Current user, also bound to the request's caller context.

    Async so the context is set in the request task, where the endpoint's
    threadpool call copies it from.
    """
    set_current_caller(user.id, user.email)
    return user


async def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Get current admin user (authorization check)

    Raises:
        AuthorizationError: If user is not admin
    """
    if current_user.role != UserRole.ADMIN.value:
        raise AuthorizationError("Admin access required")
    return current_user


def get_caller_identity(current_user: User = Depends(get_current_user)) -> CallerIdentity:
    return CallerIdentity(user_id=current_user.id, role=current_user.role, email=current_user.email)


def get_ownership_authorizer(db: Session = Depends(get_db)) -> ResourceOwnershipAuthorizer:
    return ResourceOwnershipAuthorizer(SqlOwnershipLookups(db))


def require_resource_access(
    kind: ResourceKind,
    path_param: str,
    *,
    read_only: bool = False,
) -> Callable[..., ResourceRef]:
    """
    Build a dependency that checks the caller may access the resource named
    by a path parameter.

    Args:
        kind: Kind of resource the path parameter identifies
        path_param: Name of the path parameter holding the resource id
        read_only: Whether the route only reads the resource

    Returns:
        Dependency returning the checked ResourceRef
    """
    def dependency(
        request: Request,
        caller: CallerIdentity = Depends(get_caller_identity),
        authorizer: ResourceOwnershipAuthorizer = Depends(get_ownership_authorizer),
    ) -> ResourceRef:
        try:
            resource_id = int(request.path_params[path_param])
        except (KeyError, ValueError):
            raise ResourceNotFoundError(kind.value.replace("_", " ").capitalize())
        ref = ResourceRef(kind=kind, id=resource_id)
        authorizer.require_access(caller, ref, read_only=read_only)
        return ref

    return dependency
