"""User routes"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from app.core.database import get_db
from app.schemas.audit import AuditEventResponse
from app.schemas.user import UserResponse
from app.services.audit_service import audit_service
from app.services.user_service import user_service
from app.api.deps import get_current_user, get_current_admin_user
from app.models.user import User

router = APIRouter()


@router.get("/me", response_model=UserResponse)
def get_my_profile(
    current_user: User = Depends(get_current_user)
):
    """Get current user profile"""
    return UserResponse.model_validate(current_user)


@router.get("/me/audit", response_model=List[AuditEventResponse])
def get_my_audit_events(
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Recent security events for the current user

    Args:
        limit: Maximum number of events, newest first
        current_user: Current authenticated user
        db: Database session

    Returns:
        Audit events
    """
    events = audit_service.events_for_user(db, current_user.id, limit=limit)
    return [AuditEventResponse.from_event(event) for event in events]


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """
    Get a user by id (admin only)

    Raises:
        ResourceNotFoundError: If the user does not exist or is deleted
    """
    user = user_service.get_active_user(db, user_id)
    return UserResponse.model_validate(user)
