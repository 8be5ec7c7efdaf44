import logging
from collections.abc import Sequence
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authspace.core.clock import as_utc, utcnow
from authspace.core.config import get_settings
from authspace.core.context import UNFILTERED, SecurityContext
from authspace.core.security import InvalidToken, TokenSigner, hash_token
from authspace.models.audit import EventType
from authspace.models.users import Invitation, SpaceInvitation, User
from authspace.services import audit_service, space_service, user_service
from authspace.services.results import Outcome, Status
from authspace.services.space_service import SpaceGrant

logger = logging.getLogger(__name__)

INVALID_TOKEN = "Invalid invitation token"
ALREADY_USED = "Invitation already used"
EXPIRED = "Invitation expired"


def check_grantable(
    db: Session, context: SecurityContext, grants: Sequence[SpaceGrant]
) -> Outcome[None]:
    """An inviter may only hand out roles they hold themselves in each space."""
    for grant in grants:
        allowed = space_service.require_space_role(db, context, grant.space_id, grant.role)
        if not allowed.ok:
            return allowed
    return Outcome.success()


def create_invitation(
    db: Session,
    *,
    invited_by: int | None,
    email: str,
    grants: Sequence[SpaceGrant],
    signer: TokenSigner,
    ttl: timedelta | None = None,
    now: datetime | None = None,
) -> Outcome[tuple[Invitation, str]]:
    """Persist an invitation with its space grants; ``value`` is ``(invitation, raw_token)``."""
    email = user_service.normalize_email(email)
    if not email:
        return Outcome.failure(Status.INVALID, "Email is required")
    space_ids = [grant.space_id for grant in grants]
    if len(set(space_ids)) != len(space_ids):
        return Outcome.failure(Status.INVALID, "A space may only be granted once")
    for space_id in space_ids:
        if space_service.get_space(db, space_id) is None:
            return Outcome.failure(Status.NOT_FOUND, "Space not found")

    now = now or utcnow()
    ttl = ttl or timedelta(hours=get_settings().invite_ttl_hours)
    raw_token = signer.sign({"invited_by": invited_by, "email": email}, ttl)

    invitation = Invitation(
        email=email,
        token_hash=hash_token(raw_token),
        expires=(now + ttl).replace(microsecond=0),
        invited_by=invited_by,
    )
    for grant in grants:
        invitation.grants.append(SpaceInvitation(space_id=grant.space_id, role=str(grant.role)))
    db.add(invitation)
    db.flush()

    audit_service.record_event(
        db,
        entity_type="invitation",
        entity_id=invitation.id,
        event_type=EventType.CREATED,
        space_ids=space_ids,
        author_id=invited_by,
    )
    db.commit()
    db.refresh(invitation)
    logger.info("Invitation id=%s created by user id=%s", invitation.id, invited_by)
    return Outcome.success((invitation, raw_token))


def fetch_invitation_by_token(db: Session, token: str | None) -> Invitation | None:
    if not token:
        return None
    stmt = (
        select(Invitation)
        .where(Invitation.token_hash == hash_token(token))
        .execution_options(**UNFILTERED)
    )
    return db.execute(stmt).scalar_one_or_none()


def check_invitation(invitation: Invitation, now: datetime | None = None) -> Outcome[Invitation]:
    if invitation.is_used:
        return Outcome.failure(Status.CONFLICT, ALREADY_USED)
    if as_utc(invitation.expires) <= (now or utcnow()):
        return Outcome.failure(Status.EXPIRED, EXPIRED)
    return Outcome.success(invitation)


def resolve_invitation_token(
    db: Session,
    token: str | None,
    signer: TokenSigner,
    *,
    now: datetime | None = None,
) -> Outcome[Invitation]:
    """Find a redeemable invitation behind a mailed token."""
    invitation = fetch_invitation_by_token(db, token)
    if invitation is None:
        return Outcome.failure(Status.NOT_FOUND, INVALID_TOKEN)
    checked = check_invitation(invitation, now)
    if not checked.ok:
        return checked
    try:
        payload = signer.verify(token)
    except InvalidToken:
        return Outcome.failure(Status.NOT_FOUND, INVALID_TOKEN)
    if user_service.normalize_email(str(payload.get("email", ""))) != invitation.email:
        return Outcome.failure(Status.NOT_FOUND, INVALID_TOKEN)
    return Outcome.success(invitation)


def _lock_invitation(db: Session, invitation_id: int, now: datetime) -> Outcome[Invitation]:
    stmt = (
        select(Invitation)
        .where(Invitation.id == invitation_id)
        .with_for_update()
        .execution_options(populate_existing=True, **UNFILTERED)
    )
    invitation = db.execute(stmt).scalar_one_or_none()
    if invitation is None:
        return Outcome.failure(Status.NOT_FOUND, "Invitation not found")
    return check_invitation(invitation, now)


def _claim(db: Session, invitation: Invitation, user_id: int, now: datetime) -> bool:
    claimed = db.execute(
        update(Invitation)
        .where(
            Invitation.id == invitation.id,
            Invitation.user_id.is_(None),
            Invitation.expires > now,
        )
        .values(user_id=user_id)
        .execution_options(synchronize_session="fetch")
    )
    return claimed.rowcount == 1


def _claimed_elsewhere(db: Session, invitation_id: int) -> bool:
    claimed_by = db.execute(
        select(Invitation.user_id)
        .where(Invitation.id == invitation_id)
        .execution_options(**UNFILTERED)
    ).scalar_one_or_none()
    return claimed_by is not None


def _grants_of(invitation: Invitation) -> list[SpaceGrant]:
    return [SpaceGrant(space_id=grant.space_id, role=grant.role) for grant in invitation.grants]


def redeem_invitation(
    db: Session,
    *,
    invitation_id: int,
    username: str,
    password: str,
    first_name: str = "",
    last_name: str = "",
    now: datetime | None = None,
) -> Outcome[int]:
    """Create the invited account and its memberships, consuming the invitation.

    The invitation row is locked while the account is built and is claimed
    with a conditional UPDATE; of any number of concurrent redemptions exactly
    one commits and the rest report the invitation as already used.
    """
    now = now or utcnow()
    locked = _lock_invitation(db, invitation_id, now)
    if not locked.ok:
        db.rollback()
        return Outcome.failure(locked.status, locked.detail)
    invitation = locked.value

    grants = _grants_of(invitation)
    try:
        inserted = user_service.insert_user(
            db,
            username=username,
            email=invitation.email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            grants=grants,
            author_id=invitation.invited_by,
        )
        if not inserted.ok:
            db.rollback()
            if _claimed_elsewhere(db, invitation_id):
                return Outcome.failure(Status.CONFLICT, ALREADY_USED)
            return Outcome.failure(inserted.status, inserted.detail)
        user = inserted.value

        if not _claim(db, invitation, user.id, now):
            db.rollback()
            return Outcome.failure(Status.CONFLICT, ALREADY_USED)

        audit_service.record_event(
            db,
            entity_type="invitation",
            entity_id=invitation.id,
            event_type=EventType.REDEEMED,
            space_ids=[grant.space_id for grant in grants],
            author_id=user.id,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        # A concurrent redemption may have committed the same email first.
        if _claimed_elsewhere(db, invitation_id):
            return Outcome.failure(Status.CONFLICT, ALREADY_USED)
        return Outcome.failure(Status.CONFLICT, "Username or email already registered")

    logger.info("Invitation id=%s redeemed by user id=%s", invitation.id, user.id)
    return Outcome.success(user.id)


def accept_invitation(
    db: Session,
    *,
    invitation_id: int,
    user_id: int,
    now: datetime | None = None,
) -> Outcome[int]:
    """Consume an invitation for an existing account with the invited email.

    Spaces the user already belongs to keep their current role; only the
    missing memberships are added.
    """
    now = now or utcnow()
    locked = _lock_invitation(db, invitation_id, now)
    if not locked.ok:
        db.rollback()
        return Outcome.failure(locked.status, locked.detail)
    invitation = locked.value

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        db.rollback()
        return Outcome.failure(Status.NOT_FOUND, "User not found")
    if user.email != invitation.email:
        db.rollback()
        return Outcome.failure(Status.FORBIDDEN, "Invitation was sent to another email address")

    added: list[int] = []
    for grant in _grants_of(invitation):
        if space_service.membership_role(db, user_id=user.id, space_id=grant.space_id) is None:
            space_service.upsert_membership(
                db, user_id=user.id, space_id=grant.space_id, role=grant.role
            )
            added.append(grant.space_id)

    if not _claim(db, invitation, user.id, now):
        db.rollback()
        return Outcome.failure(Status.CONFLICT, ALREADY_USED)

    audit_service.record_event(
        db,
        entity_type="invitation",
        entity_id=invitation.id,
        event_type=EventType.REDEEMED,
        space_ids=[grant.space_id for grant in invitation.grants],
        author_id=user.id,
    )
    db.commit()
    logger.info(
        "Invitation id=%s accepted by user id=%s, spaces added: %s", invitation.id, user.id, added
    )
    return Outcome.success(user.id)


def list_invitations(db: Session, *, invited_by: int | None = None) -> list[Invitation]:
    stmt = select(Invitation).order_by(Invitation.expires, Invitation.id)
    if invited_by is not None:
        stmt = stmt.where(Invitation.invited_by == invited_by)
    return list(db.execute(stmt).scalars())


def list_space_invitations(db: Session, space_id: int) -> list[Invitation]:
    stmt = (
        select(Invitation)
        .join(SpaceInvitation, SpaceInvitation.invitation_id == Invitation.id)
        .where(SpaceInvitation.space_id == space_id)
        .order_by(Invitation.expires, Invitation.id)
    )
    return list(db.execute(stmt).scalars())
