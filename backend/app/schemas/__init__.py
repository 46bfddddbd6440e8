"""Pydantic schemas for API validation"""

from app.schemas.user import (
    UserRole,
    ExternalPrincipal,
    UserResponse,
    TokenExchangeRequest,
    RefreshTokenRequest,
    LogoutRequest,
    RevokeAllRequest,
    RevokeAllResponse,
    TokenResponse,
)
from app.schemas.audit import AuditEventResponse

__all__ = [
    "UserRole", "ExternalPrincipal", "UserResponse",
    "TokenExchangeRequest", "RefreshTokenRequest", "LogoutRequest",
    "RevokeAllRequest", "RevokeAllResponse", "TokenResponse",
    "AuditEventResponse",
]
