from sqlalchemy import select
from sqlalchemy.orm import Session

from authspace.core.context import SecurityContext
from authspace.models.audit import EventType
from authspace.models.resources import Resource
from authspace.models.spaces import Role
from authspace.services import audit_service, space_service
from authspace.services.results import Outcome, Status


def list_resources(db: Session, *, space_id: int | None = None) -> list[Resource]:
    stmt = select(Resource).order_by(Resource.created_at, Resource.id)
    if space_id is not None:
        stmt = stmt.where(Resource.space_id == space_id)
    return list(db.execute(stmt).scalars())


def create_resource(
    db: Session,
    context: SecurityContext,
    *,
    space_id: int,
    slug: str,
    title: str,
    content: str = "",
) -> Outcome[Resource]:
    allowed = space_service.require_space_role(db, context, space_id, Role.MEMBER)
    if not allowed.ok:
        return Outcome.failure(allowed.status, allowed.detail)

    slug = slug.strip()
    if not space_service.SLUG_RE.match(slug):
        return Outcome.failure(Status.INVALID, "Resource slug must be URL-safe")
    existing = db.execute(
        select(Resource.id).where(Resource.space_id == space_id, Resource.slug == slug)
    ).first()
    if existing:
        return Outcome.failure(Status.CONFLICT, "Resource slug already taken in this space")

    resource = Resource(
        space_id=space_id,
        slug=slug,
        title=title.strip(),
        content=content,
        created_by=context.effective_user_id,
    )
    db.add(resource)
    db.flush()
    audit_service.record_event(
        db,
        entity_type="resource",
        entity_id=resource.id,
        event_type=EventType.CREATED,
        space_ids=[space_id],
        author_id=context.effective_user_id,
    )
    db.commit()
    db.refresh(resource)
    return Outcome.success(resource)


def delete_resource(
    db: Session,
    context: SecurityContext,
    resource_id: int,
    *,
    space_id: int | None = None,
) -> Outcome[None]:
    # Resources outside the visible spaces are filtered out, so they read as missing.
    resource = db.execute(
        select(Resource).where(Resource.id == resource_id)
    ).scalar_one_or_none()
    if resource is None or (space_id is not None and resource.space_id != space_id):
        return Outcome.failure(Status.NOT_FOUND, "Resource not found")
    allowed = space_service.require_space_role(db, context, resource.space_id, Role.ADMIN)
    if not allowed.ok:
        return Outcome.failure(allowed.status, allowed.detail)

    space_id = resource.space_id
    db.delete(resource)
    audit_service.record_event(
        db,
        entity_type="resource",
        entity_id=resource_id,
        event_type=EventType.DELETED,
        space_ids=[space_id],
        author_id=context.effective_user_id,
    )
    db.commit()
    return Outcome.success()
