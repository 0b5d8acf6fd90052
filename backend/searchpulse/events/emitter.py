import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from searchpulse.models.audit_log import AuditLog


class EventEnvelope(BaseModel):
    event_id: str = Field(min_length=1)
    site_url: str = Field(min_length=1)
    event_type: str = Field(min_length=1)
    timestamp: str = Field(min_length=1)
    payload: dict[str, Any]


def emit_event(db: Session, site_url: str, event_type: str, payload: dict[str, Any]) -> EventEnvelope:
    """Stage an audit row for the event; the caller's commit persists it."""
    now = datetime.now(UTC)
    event = EventEnvelope(
        event_id=str(uuid.uuid4()),
        site_url=site_url,
        event_type=event_type,
        timestamp=now.isoformat(),
        payload=payload,
    )
    db.add(
        AuditLog(
            site_url=site_url,
            event_type=event.event_type,
            payload_json=event.model_dump_json(),
            created_at=now,
        )
    )
    return event
