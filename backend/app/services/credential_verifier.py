"""Credential verification for inbound bearer tokens."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Optional

from jose import JWTError

from app.core.exceptions import InvalidSignatureError, TokenExpiredError, TokenRevokedError
from app.core.security import as_utc, decode_token, from_timestamp, token_fingerprint, utcnow
from app.services.revocation_store import RevocationStore

logger = logging.getLogger(__name__)

# Returns the tokens_valid_from cutoff for a subject, or None.
TokensValidFromLookup = Callable[[str], Optional[datetime]]


class CredentialVerifier:
    """
    Verify a signed token and return its claims.

    Checks run in a fixed order: signature, expiry, revocation. Nothing is
    written; the only I/O is the revocation lookup.
    """

    def __init__(
        self,
        public_key: str,
        revocation_store: Optional[RevocationStore],
        *,
        algorithms: Iterable[str] = ("RS256",),
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        expected_type: Optional[str] = None,
        tokens_valid_from: Optional[TokensValidFromLookup] = None,
        leeway_seconds: int = 0,
    ) -> None:
        self.public_key = public_key
        self.revocation_store = revocation_store
        self.algorithms = tuple(algorithms)
        self.audience = audience
        self.issuer = issuer
        self.expected_type = expected_type
        self.tokens_valid_from = tokens_valid_from
        self.leeway_seconds = leeway_seconds

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Verify a bearer token

        Args:
            token: Compact JWS string

        Returns:
            Dict: The token's claims, unchanged

        Raises:
            InvalidSignatureError: Token is malformed, forged, or of the wrong type
            TokenExpiredError: exp is missing or in the past
            TokenRevokedError: Token id is in the revocation store, or the
                token predates the subject's tokens_valid_from cutoff
        """
        try:
            claims = decode_token(
                token,
                self.public_key,
                self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
            )
        except (JWTError, ValueError, TypeError):
            raise InvalidSignatureError()
        if not isinstance(claims, dict):
            raise InvalidSignatureError()

        subject = claims.get("sub")
        token_id = claims.get("jti")

        if self.expected_type and claims.get("typ") != self.expected_type:
            logger.warning("Token type mismatch for subject %s: expected %s", subject, self.expected_type)
            raise InvalidSignatureError()

        expires_at = from_timestamp(claims.get("exp"))
        if expires_at is None or utcnow() >= expires_at + timedelta(seconds=self.leeway_seconds):
            raise TokenExpiredError()

        if self.revocation_store is not None:
            revocation_key = token_id or token_fingerprint(token)
            if self.revocation_store.is_revoked(revocation_key):
                logger.warning("SECURITY: revoked token presented. subject=%s jti=%s", subject, token_id)
                raise TokenRevokedError()

        if self.tokens_valid_from is not None and subject:
            self._check_tokens_valid_from(subject, token_id, claims.get("iat"))

        return claims

    def _check_tokens_valid_from(self, subject: str, token_id: Optional[str], iat: Any) -> None:
        cutoff = as_utc(self.tokens_valid_from(subject))
        if cutoff is None:
            return
        issued_at = from_timestamp(iat)
        # Tokens carry whole-second iat, so compare at second precision.
        if issued_at is None or int(issued_at.timestamp()) < int(cutoff.timestamp()):
            logger.warning(
                "SECURITY: token issued before tokens_valid_from. subject=%s jti=%s", subject, token_id
            )
            raise TokenRevokedError()
