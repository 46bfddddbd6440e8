"""Audit event response schemas."""

import json
from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field


class AuditEventResponse(BaseModel):
    id: int
    action: str
    outcome: str
    ip_address: Optional[str]
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime]

    @classmethod
    def from_event(cls, event) -> "AuditEventResponse":
        return cls(
            id=event.id,
            action=event.action,
            outcome=event.outcome,
            ip_address=event.ip_address,
            metadata=json.loads(event.metadata_json or "{}"),
            created_at=event.created_at,
        )
