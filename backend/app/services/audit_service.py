"""Audit service for authentication and token lifecycle events."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models.audit import AuditEvent

LOGIN = "auth.login"
LOGIN_DENIED = "auth.login_denied"
TOKEN_REFRESH = "auth.token_refresh"
LOGOUT = "auth.logout"
REVOKE_ALL = "auth.revoke_all"


class AuditService:
    """Persist the audit trail. Never stores token contents."""

    @staticmethod
    def log_event(
        db: Session,
        *,
        action: str,
        user_id: Optional[int] = None,
        external_subject: Optional[str] = None,
        outcome: str = "success",
        ip_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            user_id=user_id,
            external_subject=external_subject,
            action=action,
            outcome=outcome,
            ip_address=ip_address,
            metadata_json=json.dumps(metadata or {}, ensure_ascii=False, sort_keys=True),
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    @staticmethod
    def events_for_user(db: Session, user_id: int, limit: int = 50) -> List[AuditEvent]:
        return (
            db.query(AuditEvent)
            .filter(AuditEvent.user_id == user_id)
            .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
            .limit(limit)
            .all()
        )


audit_service = AuditService()
