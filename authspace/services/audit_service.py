from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from authspace.models.audit import AuditEvent, AuditEventSpace, EventType


def record_event(
    db: Session,
    *,
    entity_type: str,
    entity_id: int | None,
    event_type: EventType,
    space_ids: Iterable[int] = (),
    author_id: int | None = None,
) -> AuditEvent:
    """Append an event to the caller's transaction; committing is the caller's job."""
    event = AuditEvent(
        entity_type=entity_type,
        entity_id=entity_id,
        event_type=event_type.value,
        author_id=author_id,
    )
    for space_id in sorted(set(space_ids)):
        event.spaces.append(AuditEventSpace(space_id=space_id))
    db.add(event)
    db.flush()
    return event


def list_events(db: Session, *, limit: int = 100) -> list[AuditEvent]:
    stmt = (
        select(AuditEvent)
        .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).unique().scalars())
