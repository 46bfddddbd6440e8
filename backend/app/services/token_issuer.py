"""Token issuer - mints RS256 access and refresh tokens."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from app.core.security import encode_token, generate_token_id, utcnow
from app.services.refresh_token_index import RefreshTokenIndex

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    jti: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: IssuedToken
    refresh_token: IssuedToken


class TokenIssuer:
    """Sign tokens with the service's private key."""

    def __init__(
        self,
        private_key: str,
        refresh_index: RefreshTokenIndex,
        *,
        algorithm: str = "RS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
    ) -> None:
        if algorithm.upper().startswith("HS"):
            raise ValueError("Shared-secret algorithms are not allowed for token signing")
        self.private_key = private_key
        self.refresh_index = refresh_index
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.issuer = issuer
        self.audience = audience

    def _base_claims(self, subject: str, ttl: timedelta, user_id: Optional[int]) -> Dict[str, Any]:
        now = utcnow()
        claims: Dict[str, Any] = {
            "sub": subject,
            "jti": generate_token_id(),
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        if user_id is not None:
            claims["uid"] = user_id
        if self.issuer:
            claims["iss"] = self.issuer
        if self.audience:
            claims["aud"] = self.audience
        return claims

    def _sign(self, claims: Dict[str, Any]) -> IssuedToken:
        token = encode_token(claims, self.private_key, self.algorithm)
        return IssuedToken(
            token=token,
            jti=claims["jti"],
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        )

    def issue_access_token(self, subject: str, role: str, *, user_id: Optional[int] = None) -> IssuedToken:
        """
        Create an access token

        Args:
            subject: External subject of the identity
            role: Role name carried in the token
            user_id: Local identity id, when known

        Returns:
            IssuedToken: Signed token with its jti and expiry
        """
        claims = self._base_claims(subject, self.access_ttl, user_id)
        claims.update({
            "role": role,
            "auth_type": "oauth2",
            "typ": ACCESS_TOKEN_TYPE,
        })
        logger.debug("Creating access token for subject: %s", subject)
        return self._sign(claims)

    def issue_refresh_token(self, subject: str, *, user_id: Optional[int] = None) -> IssuedToken:
        """
        Create a refresh token and record it in the active refresh-token index

        Args:
            subject: External subject of the identity
            user_id: Local identity id, when known

        Returns:
            IssuedToken: Signed token with its jti and expiry
        """
        claims = self._base_claims(subject, self.refresh_ttl, user_id)
        claims["typ"] = REFRESH_TOKEN_TYPE
        issued = self._sign(claims)
        self.refresh_index.add(issued.jti, subject, issued.expires_at)
        logger.debug("Creating refresh token for subject: %s", subject)
        return issued

    def issue_token_pair(self, subject: str, role: str, *, user_id: Optional[int] = None) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(subject, role, user_id=user_id),
            refresh_token=self.issue_refresh_token(subject, user_id=user_id),
        )
