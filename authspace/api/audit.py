from fastapi import APIRouter, Depends, Query

from authspace.api.deps import RequestScope, require_user
from authspace.schemas.audit import AuditEventOut
from authspace.services import audit_service

router = APIRouter(prefix="/audit-events", tags=["audit"])


@router.get("", response_model=list[AuditEventOut])
def list_audit_events(
    limit: int = Query(default=100, ge=1, le=1000),
    scope: RequestScope = Depends(require_user),
):
    events = audit_service.list_events(scope.db, limit=limit)
    return [
        AuditEventOut(
            id=event.id,
            created_at=event.created_at,
            author_id=event.author_id,
            author_username=event.author.username if event.author else "Anonymous",
            event_type=event.event_type,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            space_ids=sorted(event.space_ids),
        )
        for event in events
    ]
