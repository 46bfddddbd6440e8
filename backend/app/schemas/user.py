"""User and token schemas"""

from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum

from app.core.exceptions import AuthenticationError


class UserRole(str, Enum):
    """User role enumeration"""
    USER = "USER"
    MODERATOR = "MODERATOR"
    ADMIN = "ADMIN"

    @classmethod
    def parse(cls, value: Any) -> "UserRole":
        """
        Parse a role name case-insensitively

        Raises:
            ValueError: If the value is not a known role
        """
        if not isinstance(value, str):
            raise ValueError(f"Role must be a string, got {type(value).__name__}")
        return cls(value.strip().upper())


class ExternalPrincipal(BaseModel):
    """An externally authenticated principal, built from verified provider claims"""
    provider: str = "auth0"
    subject: str = Field(..., min_length=1)
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    claims: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_claims(cls, claims: Dict[str, Any], provider: str = "auth0") -> "ExternalPrincipal":
        """
        Raises:
            AuthenticationError: If the claims carry no subject
        """
        subject = claims.get("sub") or claims.get("id")
        if not subject:
            raise AuthenticationError("Subject claim missing from token")
        verified = claims.get("email_verified")
        return cls(
            provider=provider,
            subject=str(subject),
            email=claims.get("email") if isinstance(claims.get("email"), str) else None,
            email_verified=verified if isinstance(verified, bool) else None,
            claims=claims,
        )


class UserResponse(BaseModel):
    """User response schema"""
    id: int
    external_subject: str
    email: str
    username: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    picture_url: Optional[str] = None
    role: str
    created_at: Optional[datetime]
    last_login: Optional[datetime]

    class Config:
        from_attributes = True


class TokenExchangeRequest(BaseModel):
    """Identity provider credential presented for a local token pair"""
    id_token: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class RevokeAllRequest(BaseModel):
    """Admins may target another user; everyone else revokes their own tokens"""
    user_id: Optional[int] = None


class RevokeAllResponse(BaseModel):
    success: bool = True
    user_id: int
    refresh_tokens_revoked: int


class TokenResponse(BaseModel):
    """JWT token response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int
    user: UserResponse
