"""User service - local identity lookups and mass token invalidation"""

from sqlalchemy.orm import Session
from typing import Callable, Optional
from datetime import datetime, timedelta
from app.models.user import User
from app.core.exceptions import ResourceNotFoundError
from app.core.security import as_utc, utcnow
import logging

logger = logging.getLogger(__name__)


class UserService:
    """Service for local identity records"""

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_subject(db: Session, external_subject: str) -> Optional[User]:
        """Get user by identity provider subject"""
        return db.query(User).filter(User.external_subject == external_subject).first()

    @staticmethod
    def get_active_user(db: Session, user_id: int) -> User:
        """
        Get a user that has not been soft-deleted

        Raises:
            ResourceNotFoundError: If the user does not exist or is deleted
        """
        user = UserService.get_user_by_id(db, user_id)
        if not user or user.is_deleted:
            raise ResourceNotFoundError("User")
        return user

    @staticmethod
    def record_login(db: Session, user: User) -> User:
        user.last_login = utcnow()
        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def revoke_all_tokens(db: Session, user: User) -> datetime:
        """
        Invalidate every token issued to the user up to now

        Args:
            db: Database session
            user: User whose tokens are invalidated

        Returns:
            The new tokens_valid_from cutoff
        """
        # Rounded up: tokens carry whole-second iat, including any minted this second.
        cutoff = utcnow().replace(microsecond=0) + timedelta(seconds=1)
        user.tokens_valid_from = cutoff
        db.commit()
        logger.info(f"Tokens invalidated for user {user.id} (valid from {cutoff.isoformat()})")
        return cutoff

    @staticmethod
    def tokens_valid_from_lookup(session_factory: Callable[[], Session]) -> Callable[[str], Optional[datetime]]:
        """
        Build the cutoff lookup used by the access token verifier.

        Each call opens and closes its own session, so the verifier stays
        independent of the request's session.
        """
        def lookup(external_subject: str) -> Optional[datetime]:
            db = session_factory()
            try:
                row = (
                    db.query(User.tokens_valid_from)
                    .filter(User.external_subject == external_subject)
                    .first()
                )
                return as_utc(row[0]) if row else None
            finally:
                db.close()

        return lookup


user_service = UserService()
