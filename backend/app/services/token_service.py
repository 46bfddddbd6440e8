"""Refresh token rotation and revocation service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from app.core.exceptions import (
    AuthenticationError,
    InvalidRefreshTokenError,
    RevocationStoreUnavailableError,
)
from app.core.security import remaining_lifetime, token_fingerprint
from app.services.credential_verifier import CredentialVerifier
from app.services.refresh_token_index import RefreshTokenIndex
from app.services.revocation_store import RevocationStore
from app.services.token_issuer import TokenIssuer, TokenPair

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubjectIdentity:
    """What a new access token needs to know about its subject."""
    subject: str
    role: str
    user_id: Optional[int] = None


# Returns None when the subject may no longer receive tokens.
IdentityResolver = Callable[[str], Optional[SubjectIdentity]]


class TokenService:
    """
    Manage the refresh-token lifecycle.

    A refresh token can be rotated exactly once. Any later use, including a
    client retry after a lost response, fails with InvalidRefreshTokenError.
    """

    def __init__(
        self,
        issuer: TokenIssuer,
        refresh_verifier: CredentialVerifier,
        access_verifier: CredentialVerifier,
        refresh_index: RefreshTokenIndex,
        revocation_store: RevocationStore,
    ) -> None:
        self.issuer = issuer
        self.refresh_verifier = refresh_verifier
        self.access_verifier = access_verifier
        self.refresh_index = refresh_index
        self.revocation_store = revocation_store

    def issue_token_pair(self, identity: SubjectIdentity) -> TokenPair:
        return self.issuer.issue_token_pair(identity.subject, identity.role, user_id=identity.user_id)

    def rotate_refresh_token(
        self,
        refresh_token: str,
        subject: Optional[str] = None,
        *,
        resolve_identity: Optional[IdentityResolver] = None,
    ) -> Tuple[SubjectIdentity, TokenPair]:
        """
        Exchange a refresh token for a new access/refresh pair

        Args:
            refresh_token: The refresh token being presented
            subject: Expected owner; when given, a token for anyone else is rejected
            resolve_identity: Looks up role and local id for the token's subject

        Returns:
            Tuple of (resolved identity, new token pair)

        Raises:
            InvalidRefreshTokenError: For every validation failure, uniformly
        """
        try:
            claims = self.refresh_verifier.verify(refresh_token)
        except AuthenticationError as exc:
            logger.warning("Refresh token rejected at verification: %s", exc.message)
            raise InvalidRefreshTokenError()

        token_subject = claims.get("sub")
        jti = claims.get("jti")
        if not token_subject or not jti:
            raise InvalidRefreshTokenError()
        if subject is not None and subject != token_subject:
            logger.warning("SECURITY: refresh token subject mismatch. presented_for=%s owner=%s", subject, token_subject)
            raise InvalidRefreshTokenError()

        record = self.refresh_index.get(jti)
        if record is None:
            logger.warning("SECURITY: refresh token not in active index (replay?). subject=%s jti=%s", token_subject, jti)
            raise InvalidRefreshTokenError()
        if record.subject != token_subject:
            raise InvalidRefreshTokenError()
        if record.is_expired():
            raise InvalidRefreshTokenError()

        if resolve_identity is not None:
            identity = resolve_identity(token_subject)
            if identity is None:
                logger.warning("Refresh rejected: subject %s can no longer authenticate", token_subject)
                raise InvalidRefreshTokenError()
        else:
            identity = SubjectIdentity(
                subject=token_subject,
                role=str(claims.get("role") or "USER"),
                user_id=claims.get("uid"),
            )

        # Removing the index entry is the gate: of two racing rotations of
        # the same token only one gets the record back.
        if self.refresh_index.pop(jti) is None:
            logger.warning("SECURITY: concurrent refresh token reuse detected. subject=%s jti=%s", token_subject, jti)
            raise InvalidRefreshTokenError()
        ttl, _ = remaining_lifetime(claims.get("exp"))
        self.revocation_store.revoke(jti, ttl)

        pair = self.issue_token_pair(identity)
        logger.info("Refresh token rotated successfully for subject: %s", token_subject)
        return identity, pair

    def revoke_refresh_token(self, refresh_token: str) -> bool:
        """
        Revoke a refresh token (logout)

        Returns:
            bool: True if a live token was revoked
        """
        try:
            claims = self.refresh_verifier.verify(refresh_token)
        except AuthenticationError:
            return False
        jti = claims.get("jti")
        if not jti or self.refresh_index.pop(jti) is None:
            return False
        ttl, _ = remaining_lifetime(claims.get("exp"))
        self.revocation_store.revoke(jti, ttl)
        logger.info("Refresh token revoked for subject: %s", claims.get("sub"))
        return True

    def revoke_access_token(self, access_token: str) -> bool:
        """
        Revoke an access token before its natural expiry

        Returns:
            bool: True if the token was valid and is now revoked
        """
        try:
            claims = self.access_verifier.verify(access_token)
        except AuthenticationError:
            return False
        ttl, _ = remaining_lifetime(claims.get("exp"))
        self.revocation_store.revoke(claims.get("jti") or token_fingerprint(access_token), ttl)
        logger.info("Access token revoked for subject: %s", claims.get("sub"))
        return True

    def revoke_all_for_subject(self, subject: str) -> int:
        """
        Revoke every live refresh token issued to a subject

        Each entry is popped individually, so a rotation racing with this
        call either wins its pop and completes, or loses and fails.

        Returns:
            int: Number of refresh tokens revoked
        """
        count = 0
        for jti in self.refresh_index.jtis_for_subject(subject):
            record = self.refresh_index.pop(jti)
            if record is None:
                continue
            ttl, _ = remaining_lifetime(record.expires_at.timestamp())
            try:
                self.revocation_store.revoke(jti, ttl)
            except RevocationStoreUnavailableError:
                # Already out of the index, so the token cannot be rotated anyway.
                logger.error("Could not record revocation for jti %s of subject %s", jti, subject)
            count += 1
        logger.info("Revoked %d refresh tokens for subject: %s", count, subject)
        return count
