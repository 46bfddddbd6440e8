"""Identity provisioning - maps external principals onto local user records"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    EmailNotVerifiedError,
    ResourceAlreadyExistsError,
)
from app.models.user import User
from app.schemas.user import ExternalPrincipal, UserRole
from app.services.principal_extractors import PrincipalExtractor, get_extractor

logger = logging.getLogger(__name__)


class IdentityProvisioningService:
    """
    Create or refresh the local user for an externally authenticated principal.

    The provider is the source of truth for email, names, picture and role.
    Provisioning is idempotent: identical claims produce no writes.
    """

    def __init__(
        self,
        role_claim: str,
        legacy_roles_claim: str,
        *,
        claim_namespace: str = "",
        default_provider: str = "auth0",
    ) -> None:
        self.role_claim = role_claim
        self.legacy_roles_claim = legacy_roles_claim
        self.claim_namespace = claim_namespace
        self.default_provider = default_provider

    def provision(self, db: Session, principal: ExternalPrincipal) -> User:
        """
        Find or create the user for a principal and sync provider-owned fields

        Args:
            db: Database session
            principal: Verified external principal

        Returns:
            User: The created or refreshed record

        Raises:
            EmailNotVerifiedError: Email is not verified (checked before any lookup)
            AuthenticationError: Email claim missing or provider unsupported
            AccessDeniedError: The subject belongs to a deleted account
            ResourceAlreadyExistsError: Another active account holds the email
        """
        extractor = get_extractor(
            principal.provider or self.default_provider,
            principal.claims,
            claim_namespace=self.claim_namespace,
        )
        subject = principal.subject

        verified = principal.email_verified
        if verified is None:
            verified = extractor.email_verified
        if verified is not True:
            logger.warning("SECURITY: email not verified for subject: %s", subject)
            raise EmailNotVerifiedError()

        email = (principal.email or extractor.email or "").strip()
        if not email:
            logger.warning("Email claim missing for subject: %s", subject)
            raise AuthenticationError("Email claim missing from token")

        user = db.query(User).filter(User.external_subject == subject).first()
        if user is not None and user.is_deleted:
            logger.warning("SECURITY: deleted account attempted login. subject=%s user_id=%s", subject, user.id)
            raise AccessDeniedError("Account has been deactivated")

        incoming = self._profile(extractor, email)
        if user is None:
            return self._create(db, subject, incoming, extractor)
        return self._sync(db, user, incoming)

    def _profile(self, extractor: PrincipalExtractor, email: str) -> Dict[str, Any]:
        return {
            "email": email,
            "first_name": extractor.first_name,
            "last_name": extractor.last_name,
            "picture_url": extractor.picture_url,
            "role": self.extract_role(extractor.claims).value,
        }

    def _create(
        self, db: Session, subject: str, profile: Dict[str, Any], extractor: PrincipalExtractor
    ) -> User:
        self._ensure_email_available(db, profile["email"])
        user = User(
            external_subject=subject,
            username=extractor.username,
            **profile,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("Provisioned new user %s for subject: %s (role: %s)", user.id, subject, user.role)
        return user

    def _sync(self, db: Session, user: User, profile: Dict[str, Any]) -> User:
        changes = {
            field: value
            for field, value in profile.items()
            if value is not None and getattr(user, field) != value
        }
        if not changes:
            return user

        if "email" in changes:
            self._ensure_email_available(db, changes["email"], exclude_user_id=user.id)
            logger.info("Email changed for user %s", user.id)
        if "role" in changes:
            logger.info("Role changed for user %s: %s -> %s", user.id, user.role, changes["role"])

        for field, value in changes.items():
            setattr(user, field, value)
        db.commit()
        db.refresh(user)
        logger.debug("Updated user %s fields: %s", user.id, ", ".join(sorted(changes)))
        return user

    @staticmethod
    def _ensure_email_available(db: Session, email: str, exclude_user_id: Optional[int] = None) -> None:
        query = db.query(User).filter(User.email == email, User.is_deleted.is_(False))
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        if query.first() is not None:
            logger.warning("Email already in use by another active account: %s", email)
            raise ResourceAlreadyExistsError("User with this email")

    def extract_role(self, claims: Dict[str, Any]) -> UserRole:
        """
        Role from the namespaced claim, then the legacy plural claim.

        Anything missing or unrecognised falls back to USER.
        """
        raw = claims.get(self.role_claim)
        if not isinstance(raw, str):
            legacy = claims.get(self.legacy_roles_claim)
            if isinstance(legacy, list):
                raw = legacy[0] if legacy else None
            else:
                raw = legacy
        if raw is None:
            return UserRole.USER

        try:
            return UserRole.parse(raw)
        except ValueError:
            logger.warning("Unrecognised role claim %r; defaulting to %s", raw, UserRole.USER.value)
            return UserRole.USER
