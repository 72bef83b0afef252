# Overview: Append-only audit trail for state changes.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..models import AuditEvent
from ..time_utils import utcnow


def append_audit_event(
    session,
    *,
    outlet_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_id: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: dict | None = None,
) -> AuditEvent:
    """
    Append-only audit event, written in the caller's transaction.

    - No domain logic here.
    - No deletes/updates of existing events.
    - occurred_at is business time; created_at is system time (db default).
    """
    ev = AuditEvent(
        outlet_id=outlet_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        occurred_at=occurred_at or utcnow(),
        note=note,
        payload=json.dumps(payload, sort_keys=True) if payload is not None else None,
    )
    session.add(ev)
    return ev


def list_audit_events(session, outlet_id: int, *, event_type: str | None = None, entity_type: str | None = None,
                      entity_id: int | None = None, limit: int = 100) -> list[AuditEvent]:
    query = session.query(AuditEvent).filter(AuditEvent.outlet_id == outlet_id)
    if event_type:
        query = query.filter(AuditEvent.event_type == event_type)
    if entity_type:
        query = query.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditEvent.entity_id == entity_id)
    return query.order_by(AuditEvent.id.desc()).limit(limit).all()
