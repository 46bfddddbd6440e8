"""User model"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base


class User(Base):
    """Local identity record mirrored from the external identity provider"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # Provider subject, e.g. "auth0|507f1f77bcf86cd799439011". Never reassigned.
    external_subject = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), nullable=False)
    username = Column(String(100), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    picture_url = Column(String(512), nullable=True)
    role = Column(String(20), default="USER", nullable=False)
    tokens_valid_from = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    last_login = Column(DateTime(timezone=True))

    # Relationships
    workout_sessions = relationship("WorkoutSession", back_populates="user")
    audit_events = relationship("AuditEvent", back_populates="user")

    __table_args__ = (
        Index('idx_users_external_subject', 'external_subject'),
        Index('idx_users_role', 'role'),
        Index(
            'uq_users_email_active',
            'email',
            unique=True,
            postgresql_where=text('is_deleted = false'),
            sqlite_where=text('is_deleted = 0'),
        ),
    )

    def __repr__(self):
        return f"<User(id={self.id}, external_subject='{self.external_subject}', role='{self.role}')>"

    @property
    def is_active(self) -> bool:
        return not self.is_deleted

    def to_dict(self):
        """Convert to dictionary"""
        return {
            "id": self.id,
            "external_subject": self.external_subject,
            "email": self.email,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_login": self.last_login.isoformat() if self.last_login else None
        }
