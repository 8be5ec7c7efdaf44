"""Session Manager.

Sessions are addressed by the raw token the client holds in its cookie; rows
are keyed by the token's SHA-256 digest. A session is either ACTIVE or
IMPERSONATING. Only the session's own user may move it between those states,
and only while that user is an active superuser. Logout or expiry terminates
the session.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from authspace.core.clock import as_utc, utcnow
from authspace.core.config import get_settings
from authspace.core.context import SecurityContext, clear_security_context
from authspace.core.security import SESSION_TOKEN_BYTES, generate_raw_token, hash_token
from authspace.models.audit import EventType
from authspace.models.users import AuthSession, SessionState, User
from authspace.services import audit_service, space_service, user_service
from authspace.services.results import Outcome, Status

logger = logging.getLogger(__name__)

INVALID_SESSION = "Invalid session"


@dataclass(frozen=True)
class SessionView:
    effective_user: User
    impersonated_by: User | None
    visible_space_ids: tuple[int, ...]

    @property
    def context(self) -> SecurityContext:
        return SecurityContext.build(
            effective_user_id=self.effective_user.id,
            impersonated_by=self.impersonated_by.id if self.impersonated_by else None,
            visible_space_ids=self.visible_space_ids,
            is_superuser=self.effective_user.is_superuser,
        )


def create_session(db: Session, user_id: int, *, now: datetime | None = None) -> str:
    now = now or utcnow()
    raw_token = generate_raw_token(SESSION_TOKEN_BYTES)
    ttl = timedelta(minutes=get_settings().session_ttl_minutes)
    db.add(
        AuthSession(
            id=hash_token(raw_token),
            user_id=user_id,
            expires_at=now + ttl,
            last_used_at=now,
        )
    )
    db.commit()
    logger.info("Session created for user id=%s", user_id)
    return raw_token


def authenticate(
    db: Session,
    *,
    password: str,
    username: str | None = None,
    email: str | None = None,
) -> Outcome[str]:
    """Verify credentials and start a session; ``value`` is the raw cookie token."""
    verified = user_service.verify_credentials(
        db, password=password, username=username, email=email
    )
    if not verified.ok:
        return Outcome.failure(verified.status, verified.detail)
    return Outcome.success(create_session(db, verified.value))  # type: ignore[arg-type]


def _load(db: Session, raw_token: str | None, now: datetime) -> Outcome[AuthSession]:
    if not raw_token:
        return Outcome.failure(Status.NOT_FOUND, INVALID_SESSION)
    row = db.get(AuthSession, hash_token(raw_token))
    if row is None:
        return Outcome.failure(Status.NOT_FOUND, INVALID_SESSION)
    if row.expires_at is not None and as_utc(row.expires_at) <= now:
        return Outcome.failure(Status.EXPIRED, "Session expired")
    if not row.user.is_active:
        return Outcome.failure(Status.NOT_FOUND, INVALID_SESSION)
    return Outcome.success(row)


def open_session(
    db: Session, raw_token: str | None, *, now: datetime | None = None
) -> Outcome[SessionView]:
    """Resolve a session token to the identity the request acts as."""
    now = now or utcnow()
    loaded = _load(db, raw_token, now)
    if not loaded.ok:
        return Outcome.failure(loaded.status, loaded.detail)
    row = loaded.value

    owner = row.user
    target = row.impersonate_user
    if row.state is SessionState.IMPERSONATING and (target is None or not target.is_active):
        target_id = row.impersonate_user_id
        row.stop_impersonation()
        audit_service.record_event(
            db,
            entity_type="user",
            entity_id=target_id,
            event_type=EventType.IMPERSONATION_ENDED,
            author_id=owner.id,
        )
        logger.info(
            "Impersonation of inactive user id=%s ended for user id=%s", target_id, owner.id
        )

    if row.state is SessionState.IMPERSONATING and row.impersonate_user is not None:
        effective, impersonated_by = row.impersonate_user, owner
    else:
        effective, impersonated_by = owner, None

    visible = space_service.visible_space_ids_for(db, effective)
    row.last_used_at = now
    db.commit()
    return Outcome.success(
        SessionView(
            effective_user=effective,
            impersonated_by=impersonated_by,
            visible_space_ids=tuple(visible),
        )
    )


def close_session(db: Session) -> None:
    """Drop whatever security context the request installed; safe to call twice."""
    clear_security_context(db)


def _is_impersonating_elsewhere(db: Session, user_id: int) -> bool:
    stmt = (
        select(AuthSession.id)
        .where(
            AuthSession.user_id == user_id,
            AuthSession.impersonate_user_id.is_not(None),
        )
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def impersonate(
    db: Session,
    raw_token: str | None,
    target_username: str,
    *,
    now: datetime | None = None,
) -> Outcome[None]:
    loaded = _load(db, raw_token, now or utcnow())
    if not loaded.ok:
        return Outcome.failure(loaded.status, loaded.detail)
    row = loaded.value

    # Privilege comes from the session's own user, never from the impersonated one.
    owner = row.user
    if not owner.is_superuser:
        return Outcome.failure(Status.FORBIDDEN, "Impersonation requires a superuser")
    if row.state is SessionState.IMPERSONATING:
        return Outcome.failure(
            Status.FORBIDDEN, "Already impersonating; exit impersonation first"
        )

    target = user_service.get_user_by_username(db, target_username)
    if target is None or not target.is_active:
        return Outcome.failure(Status.NOT_FOUND, "User not found")
    if target.id == owner.id:
        return Outcome.failure(Status.CONFLICT, "Cannot impersonate yourself")
    if _is_impersonating_elsewhere(db, target.id):
        return Outcome.failure(Status.FORBIDDEN, "User is impersonating someone else")

    row.start_impersonation(target)
    audit_service.record_event(
        db,
        entity_type="user",
        entity_id=target.id,
        event_type=EventType.IMPERSONATION_STARTED,
        space_ids=space_service.visible_space_ids_for(db, target),
        author_id=owner.id,
    )
    db.commit()
    logger.info("User id=%s started impersonating user id=%s", owner.id, target.id)
    return Outcome.success()


def exit_impersonate(
    db: Session, raw_token: str | None, *, now: datetime | None = None
) -> Outcome[None]:
    loaded = _load(db, raw_token, now or utcnow())
    if not loaded.ok:
        return Outcome.failure(loaded.status, loaded.detail)
    row = loaded.value
    if row.state is SessionState.ACTIVE:
        return Outcome.success(detail="Not impersonating")

    target_id = row.impersonate_user_id
    row.stop_impersonation()
    audit_service.record_event(
        db,
        entity_type="user",
        entity_id=target_id,
        event_type=EventType.IMPERSONATION_ENDED,
        author_id=row.user_id,
    )
    db.commit()
    logger.info("User id=%s stopped impersonating user id=%s", row.user_id, target_id)
    return Outcome.success()


def logout(db: Session, raw_token: str | None) -> Outcome[None]:
    if not raw_token:
        return Outcome.failure(Status.NOT_FOUND, INVALID_SESSION)
    row = db.get(AuthSession, hash_token(raw_token))
    if row is None:
        return Outcome.failure(Status.NOT_FOUND, INVALID_SESSION)
    user_id = row.user_id
    db.delete(row)
    db.commit()
    logger.info("Session terminated for user id=%s", user_id)
    return Outcome.success()


def sweep_expired_sessions(db: Session, *, now: datetime | None = None) -> int:
    now = now or utcnow()
    result = db.execute(
        delete(AuthSession)
        .where(AuthSession.expires_at.is_not(None), AuthSession.expires_at <= now)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    return result.rowcount or 0
