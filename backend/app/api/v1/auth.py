"""Authentication routes"""

from fastapi import APIRouter, Depends, status, Request
from sqlalchemy.orm import Session
from typing import Optional

from app.core.database import get_db
from app.config import settings
from app.core.container import AuthServices
from app.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    EmailNotVerifiedError,
    InvalidRefreshTokenError,
)
from app.core.metrics import TOKEN_ROTATIONS
from app.schemas.user import (
    ExternalPrincipal,
    TokenExchangeRequest,
    TokenResponse,
    UserResponse,
    UserRole,
    RefreshTokenRequest,
    LogoutRequest,
    RevokeAllRequest,
    RevokeAllResponse,
)
from app.services import audit_service as audit
from app.services.audit_service import audit_service
from app.services.token_issuer import TokenPair
from app.services.token_service import SubjectIdentity
from app.services.user_service import user_service
from app.api.deps import get_auth_services, get_bearer_token, get_current_user
from app.models.user import User

router = APIRouter()


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _token_response(pair: TokenPair, user: User) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token.token,
        refresh_token=pair.refresh_token.token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        refresh_expires_in=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600,
        user=UserResponse.model_validate(user),
    )


@router.post("/token", response_model=TokenResponse, status_code=status.HTTP_200_OK)
def exchange_token(
    body: TokenExchangeRequest,
    request: Request,
    services: AuthServices = Depends(get_auth_services),
    db: Session = Depends(get_db)
):
    """
    Exchange an identity provider token for a local token pair

    The provider token is verified, the local user is provisioned or
    refreshed from its claims, and a new access/refresh pair is issued.

    Args:
        body: Provider-issued ID token
        db: Database session

    Returns:
        JWT token pair and user info
    """
    client_ip = _client_ip(request)
    services.rate_limiter.enforce(
        f"login:{client_ip}",
        [(settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60), (settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600)],
    )

    if services.provider_verifier is None:
        raise AuthenticationError("Identity provider is not configured")
    claims = services.provider_verifier.verify(body.id_token)
    principal = ExternalPrincipal.from_claims(claims, provider=settings.IDP_PROVIDER)

    try:
        user = services.identity_service.provision(db, principal)
    except EmailNotVerifiedError:
        audit_service.log_event(
            db,
            action=audit.LOGIN_DENIED,
            external_subject=principal.subject,
            outcome="denied",
            ip_address=client_ip,
            metadata={"reason": "email_not_verified"},
        )
        raise

    user = user_service.record_login(db, user)
    pair = services.token_service.issue_token_pair(
        SubjectIdentity(subject=user.external_subject, role=user.role, user_id=user.id)
    )
    audit_service.log_event(
        db,
        action=audit.LOGIN,
        user_id=user.id,
        external_subject=user.external_subject,
        ip_address=client_ip,
        metadata={"provider": principal.provider},
    )
    return _token_response(pair, user)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    req: RefreshTokenRequest,
    request: Request,
    services: AuthServices = Depends(get_auth_services),
    db: Session = Depends(get_db),
):
    """
    Rotate a refresh token

    The presented refresh token is consumed: a second use fails even if
    the first response was lost.

    Returns:
        New JWT token pair
    """
    client_ip = _client_ip(request)
    services.rate_limiter.enforce(
        f"refresh:{client_ip}",
        [(settings.RATE_LIMIT_PER_MINUTE, 60), (settings.RATE_LIMIT_PER_HOUR, 3600)],
    )

    def resolve_identity(subject: str) -> Optional[SubjectIdentity]:
        user = user_service.get_user_by_subject(db, subject)
        if not user or not user.is_active:
            return None
        return SubjectIdentity(subject=user.external_subject, role=user.role, user_id=user.id)

    try:
        identity, pair = services.token_service.rotate_refresh_token(
            req.refresh_token, resolve_identity=resolve_identity
        )
    except InvalidRefreshTokenError:
        TOKEN_ROTATIONS.labels("rejected").inc()
        raise
    TOKEN_ROTATIONS.labels("success").inc()

    user = user_service.get_active_user(db, identity.user_id)
    audit_service.log_event(
        db,
        action=audit.TOKEN_REFRESH,
        user_id=user.id,
        external_subject=user.external_subject,
        ip_address=client_ip,
    )
    return _token_response(pair, user)


@router.post("/logout", status_code=status.HTTP_200_OK)
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    access_token: str = Depends(get_bearer_token),
    current_user: User = Depends(get_current_user),
    services: AuthServices = Depends(get_auth_services),
    db: Session = Depends(get_db)
):
    """
    Logout endpoint - revoke the presented access token and, when given,
    the refresh token

    Returns:
        Success message
    """
    services.token_service.revoke_access_token(access_token)
    refresh_revoked = False
    if body and body.refresh_token:
        refresh_revoked = services.token_service.revoke_refresh_token(body.refresh_token)

    audit_service.log_event(
        db,
        action=audit.LOGOUT,
        user_id=current_user.id,
        external_subject=current_user.external_subject,
        ip_address=_client_ip(request),
        metadata={"refresh_token_revoked": refresh_revoked},
    )
    return {
        "success": True,
        "message": "Logged out successfully",
        "refresh_token_revoked": refresh_revoked
    }


@router.post("/revoke-all", response_model=RevokeAllResponse)
def revoke_all_tokens(
    request: Request,
    body: Optional[RevokeAllRequest] = None,
    current_user: User = Depends(get_current_user),
    services: AuthServices = Depends(get_auth_services),
    db: Session = Depends(get_db)
):
    """
    Invalidate every token issued to a user

    Users revoke their own tokens; admins may name another user.

    Returns:
        Number of refresh tokens revoked
    """
    target_id = body.user_id if body and body.user_id is not None else current_user.id
    if target_id != current_user.id and current_user.role != UserRole.ADMIN.value:
        raise AuthorizationError("Admin access required")

    target = user_service.get_active_user(db, target_id)
    count = services.token_service.revoke_all_for_subject(target.external_subject)
    user_service.revoke_all_tokens(db, target)

    audit_service.log_event(
        db,
        action=audit.REVOKE_ALL,
        user_id=current_user.id,
        external_subject=target.external_subject,
        ip_address=_client_ip(request),
        metadata={"target_user_id": target.id, "refresh_tokens_revoked": count},
    )
    return RevokeAllResponse(user_id=target.id, refresh_tokens_revoked=count)


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Get current user information"""
    return UserResponse.model_validate(current_user)
