from datetime import datetime

from pydantic import BaseModel


class AuditEventOut(BaseModel):
    id: int
    created_at: datetime
    author_id: int | None
    author_username: str
    event_type: str
    entity_type: str
    entity_id: int | None
    space_ids: list[int]
