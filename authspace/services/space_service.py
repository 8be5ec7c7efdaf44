import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from authspace.core.context import UNFILTERED, SecurityContext
from authspace.models.audit import EventType
from authspace.models.spaces import Membership, Role, Space, role_rank
from authspace.models.users import User
from authspace.services import audit_service
from authspace.services.results import Outcome, Status

logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r"^[a-z0-9]+(?:[-_][a-z0-9]+)*$")


@dataclass(frozen=True)
class SpaceGrant:
    space_id: int
    # Stored role strings this build does not know pass through unchanged.
    role: Role | str = Role.MEMBER


def get_space(db: Session, space_id: int) -> Space | None:
    return db.get(Space, space_id, execution_options=UNFILTERED)


def get_space_by_slug(db: Session, slug: str, *, unfiltered: bool = False) -> Space | None:
    stmt = select(Space).where(Space.slug == slug)
    if unfiltered:
        stmt = stmt.execution_options(**UNFILTERED)
    return db.execute(stmt).scalar_one_or_none()


def create_space(
    db: Session,
    *,
    slug: str,
    title: str,
    parent_space_id: int | None = None,
    is_publicly_browsable: bool = False,
    invitation_required: bool = True,
    author_id: int | None = None,
) -> Outcome[Space]:
    slug = slug.strip()
    if not SLUG_RE.match(slug):
        return Outcome.failure(Status.INVALID, "Space slug must be URL-safe")
    if get_space_by_slug(db, slug, unfiltered=True) is not None:
        return Outcome.failure(Status.CONFLICT, "Space slug already taken")
    if parent_space_id is not None and get_space(db, parent_space_id) is None:
        return Outcome.failure(Status.NOT_FOUND, "Parent space not found")

    space = Space(
        slug=slug,
        title=title.strip(),
        parent_space_id=parent_space_id,
        is_publicly_browsable=is_publicly_browsable,
        invitation_required=invitation_required,
    )
    db.add(space)
    db.flush()
    audit_service.record_event(
        db,
        entity_type="space",
        entity_id=space.id,
        event_type=EventType.CREATED,
        space_ids=[space.id],
        author_id=author_id,
    )
    db.commit()
    db.refresh(space)
    return Outcome.success(space)


def list_publicly_browsable(db: Session) -> list[Space]:
    stmt = (
        select(Space)
        .where(Space.is_publicly_browsable.is_(True))
        .order_by(Space.created_at, Space.id)
        .execution_options(**UNFILTERED)
    )
    return list(db.execute(stmt).scalars())


def public_space_ids(db: Session) -> list[int]:
    return [space.id for space in list_publicly_browsable(db)]


def visible_space_ids_for(db: Session, user: User) -> list[int]:
    if user.is_superuser:
        stmt = select(Space.id).order_by(Space.id)
    else:
        stmt = (
            select(Membership.space_id)
            .where(Membership.user_id == user.id)
            .order_by(Membership.space_id)
        )
    return list(db.execute(stmt.execution_options(**UNFILTERED)).scalars())


def list_visible_spaces(db: Session) -> list[Space]:
    """Spaces the bound security context may see."""
    stmt = select(Space).order_by(Space.created_at, Space.id)
    return list(db.execute(stmt).scalars())


def list_space_roles(db: Session, user_id: int) -> Sequence[tuple[Space, str | None]]:
    """Spaces the bound context may see, with the role ``user_id`` holds in each."""
    stmt = (
        select(Space, Membership.role)
        .outerjoin(
            Membership,
            (Membership.space_id == Space.id) & (Membership.user_id == user_id),
        )
        .order_by(Space.created_at, Space.id)
    )
    return db.execute(stmt).tuples().all()


def upsert_membership(
    db: Session, *, user_id: int, space_id: int, role: Role | str
) -> Membership:
    membership = db.get(Membership, (user_id, space_id), execution_options=UNFILTERED)
    if membership is None:
        membership = Membership(user_id=user_id, space_id=space_id, role=str(role))
        db.add(membership)
    else:
        membership.role = str(role)
    db.flush()
    return membership


def grant_membership(
    db: Session,
    *,
    user_id: int,
    space_id: int,
    role: Role = Role.MEMBER,
    author_id: int | None = None,
) -> Outcome[Membership]:
    if db.get(User, user_id) is None:
        return Outcome.failure(Status.NOT_FOUND, "User not found")
    if get_space(db, space_id) is None:
        return Outcome.failure(Status.NOT_FOUND, "Space not found")

    membership = upsert_membership(db, user_id=user_id, space_id=space_id, role=role)
    audit_service.record_event(
        db,
        entity_type="user",
        entity_id=user_id,
        event_type=EventType.MEMBERSHIP_GRANTED,
        space_ids=[space_id],
        author_id=author_id,
    )
    db.commit()
    return Outcome.success(membership)


def revoke_membership(
    db: Session,
    *,
    user_id: int,
    space_id: int,
    author_id: int | None = None,
) -> Outcome[None]:
    membership = db.get(Membership, (user_id, space_id), execution_options=UNFILTERED)
    if membership is None:
        return Outcome.success(detail="Not a member")

    db.delete(membership)
    audit_service.record_event(
        db,
        entity_type="user",
        entity_id=user_id,
        event_type=EventType.MEMBERSHIP_REVOKED,
        space_ids=[space_id],
        author_id=author_id,
    )
    db.commit()
    return Outcome.success()


def list_members(db: Session, space_id: int) -> Sequence[tuple[User, Membership]]:
    stmt = (
        select(User, Membership)
        .join(Membership, Membership.user_id == User.id)
        .where(Membership.space_id == space_id)
        .order_by(User.created_at, User.id)
    )
    return db.execute(stmt).tuples().all()


def membership_role(db: Session, *, user_id: int, space_id: int) -> str | None:
    membership = db.get(Membership, (user_id, space_id), execution_options=UNFILTERED)
    return membership.role if membership else None


def require_space_role(
    db: Session,
    context: SecurityContext,
    space_id: int,
    minimum: Role | str = Role.MEMBER,
) -> Outcome[None]:
    """Gate a mutation on the effective user's role in ``space_id``."""
    if context.is_anonymous:
        return Outcome.failure(Status.FORBIDDEN, "Authentication required")
    if not context.can_see(space_id):
        return Outcome.failure(Status.FORBIDDEN, "Space is outside your visible spaces")
    if context.is_superuser:
        return Outcome.success()

    role = membership_role(db, user_id=context.effective_user_id, space_id=space_id)  # type: ignore[arg-type]
    if role is None or role_rank(role) < role_rank(minimum):
        return Outcome.failure(Status.FORBIDDEN, "Insufficient role in this space")
    return Outcome.success()
