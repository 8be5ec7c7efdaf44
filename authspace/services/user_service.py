import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authspace.core.clock import utcnow
from authspace.core.security import hash_password, verify_password
from authspace.models.audit import EventType
from authspace.models.spaces import Role
from authspace.models.users import AuthSession, User
from authspace.services import audit_service, space_service
from authspace.services.results import Outcome, Status
from authspace.services.space_service import SpaceGrant

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
RESET_REQUESTED = "If the email address is valid, instructions will be sent."


@dataclass(frozen=True)
class SlugGrant:
    space_slug: str
    role: Role = Role.MEMBER


def normalize_email(value: str) -> str:
    return value.strip().lower()


def get_user_by_username(db: Session, username: str) -> User | None:
    return db.execute(select(User).where(User.username == username)).scalar_one_or_none()


def get_user_by_email(db: Session, email: str) -> User | None:
    stmt = select(User).where(User.email == normalize_email(email))
    return db.execute(stmt).scalar_one_or_none()


def resolve_slug_grants(db: Session, grants: Sequence[SlugGrant]) -> Outcome[list[SpaceGrant]]:
    resolved: list[SpaceGrant] = []
    for grant in grants:
        space = space_service.get_space_by_slug(db, grant.space_slug, unfiltered=True)
        if space is None:
            return Outcome.failure(Status.NOT_FOUND, f"Space not found: {grant.space_slug}")
        resolved.append(SpaceGrant(space_id=space.id, role=grant.role))
    return Outcome.success(resolved)


def insert_user(
    db: Session,
    *,
    username: str,
    email: str,
    password: str,
    first_name: str = "",
    last_name: str = "",
    is_active: bool = True,
    is_superuser: bool = False,
    is_service_account: bool = False,
    grants: Sequence[SpaceGrant] = (),
    user_id: int | None = None,
    author_id: int | None = None,
) -> Outcome[User]:
    """Add a user and its memberships to the current transaction without committing."""
    username = username.strip()
    email = normalize_email(email)
    if not username or not email:
        return Outcome.failure(Status.INVALID, "Username and email are required")
    if not password:
        return Outcome.failure(Status.INVALID, "Password is required")
    if get_user_by_username(db, username) is not None:
        return Outcome.failure(Status.CONFLICT, "Username already registered")
    if get_user_by_email(db, email) is not None:
        return Outcome.failure(Status.CONFLICT, "Email already registered")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        is_active=is_active,
        is_superuser=is_superuser,
        is_service_account=is_service_account,
    )
    if user_id is not None:
        user.id = user_id
    db.add(user)
    db.flush()

    for grant in grants:
        space_service.upsert_membership(
            db, user_id=user.id, space_id=grant.space_id, role=grant.role
        )

    audit_service.record_event(
        db,
        entity_type="user",
        entity_id=user.id,
        event_type=EventType.CREATED,
        space_ids=[grant.space_id for grant in grants],
        author_id=author_id,
    )
    return Outcome.success(user)


def create_user(
    db: Session,
    *,
    username: str,
    email: str,
    password: str,
    first_name: str = "",
    last_name: str = "",
    is_active: bool = True,
    is_superuser: bool = False,
    is_service_account: bool = False,
    space_grants: Sequence[SlugGrant] = (),
    user_id: int | None = None,
    author_id: int | None = None,
) -> Outcome[int]:
    resolved = resolve_slug_grants(db, space_grants)
    if not resolved.ok:
        return Outcome.failure(resolved.status, resolved.detail)

    try:
        inserted = insert_user(
            db,
            username=username,
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            is_active=is_active,
            is_superuser=is_superuser,
            is_service_account=is_service_account,
            grants=resolved.value or [],
            user_id=user_id,
            author_id=author_id,
        )
        if not inserted.ok:
            return Outcome.failure(inserted.status, inserted.detail)
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent signup with the same username or email.
        db.rollback()
        return Outcome.failure(Status.CONFLICT, "Username or email already registered")

    user = inserted.value
    logger.info("User created: id=%s username=%s", user.id, user.username)
    return Outcome.success(user.id)


def verify_credentials(
    db: Session,
    *,
    password: str,
    username: str | None = None,
    email: str | None = None,
) -> Outcome[int]:
    """Check a password against a username or an email, never both.

    Unknown identifier, wrong password and inactive account all produce the
    same outcome so callers cannot tell which accounts exist.
    """
    if bool(username) == bool(email):
        raise ValueError("Exactly one of username or email must be supplied")

    if username:
        user = get_user_by_username(db, username.strip())
    else:
        user = get_user_by_email(db, email)  # type: ignore[arg-type]

    if user is None:
        verify_password(password, None)
        return Outcome.failure(Status.AUTHENTICATION_FAILED, INVALID_CREDENTIALS)

    password_ok = verify_password(password, user.password_hash)
    if not password_ok or not user.is_active:
        return Outcome.failure(Status.AUTHENTICATION_FAILED, INVALID_CREDENTIALS)

    user.last_login = utcnow()
    db.commit()
    return Outcome.success(user.id)


def change_password(
    db: Session,
    *,
    user_id: int,
    new_password: str,
    author_id: int | None = None,
) -> Outcome[int]:
    """Store a new password; the caller has already verified the reset link."""
    if not new_password or not new_password.strip():
        return Outcome.failure(Status.INVALID, "Password is required")
    user = db.get(User, user_id)
    if user is None:
        return Outcome.failure(Status.NOT_FOUND, "User not found")

    user.password_hash = hash_password(new_password)
    audit_service.record_event(
        db,
        entity_type="user",
        entity_id=user.id,
        event_type=EventType.PASSWORD_CHANGED,
        author_id=author_id if author_id is not None else user.id,
    )
    db.commit()
    logger.info("Password updated for user id=%s", user.id)
    return Outcome.success(user.id)


def ask_reset_password(db: Session, email: str) -> Outcome[User]:
    """Look up the account behind a reset request.

    Always succeeds; ``value`` is only set for an active account, and the
    detail text is the same either way.
    """
    user = get_user_by_email(db, email)
    if user is None or not user.is_active:
        return Outcome.success(None, RESET_REQUESTED)
    return Outcome.success(user, RESET_REQUESTED)


def deactivate_user(db: Session, *, user_id: int, author_id: int | None = None) -> Outcome[int]:
    user = db.get(User, user_id)
    if user is None:
        return Outcome.failure(Status.NOT_FOUND, "User not found")

    user.is_active = False
    db.execute(
        delete(AuthSession)
        .where(AuthSession.user_id == user.id)
        .execution_options(synchronize_session="fetch")
    )
    audit_service.record_event(
        db,
        entity_type="user",
        entity_id=user.id,
        event_type=EventType.DEACTIVATED,
        space_ids=[membership.space_id for membership in user.memberships],
        author_id=author_id,
    )
    db.commit()
    return Outcome.success(user.id)

