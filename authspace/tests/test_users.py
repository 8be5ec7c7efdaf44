import pytest
from sqlalchemy import select

from authspace.core.security import verify_password
from authspace.models.audit import AuditEvent, EventType
from authspace.models.spaces import Membership, Role
from authspace.models.users import AuthSession, User
from authspace.services import session_service, user_service
from authspace.services.results import Status
from authspace.services.user_service import INVALID_CREDENTIALS, RESET_REQUESTED, SlugGrant


def test_create_user_hashes_password_and_applies_grants(db_session, make_space, password):
    make_space("space-1")
    make_space("space-2")

    outcome = user_service.create_user(
        db_session,
        username="john-doe",
        first_name="John",
        last_name="Doe",
        email="John.Doe@Example.com",
        password=password,
        space_grants=[
            SlugGrant("space-1", Role.ADMIN),
            SlugGrant("space-2", Role.MEMBER),
        ],
    )

    assert outcome.ok
    user = db_session.get(User, outcome.value)
    assert user.email == "john.doe@example.com"
    assert user.password_hash != password
    assert verify_password(password, user.password_hash)

    roles = {
        membership.space.slug: membership.role
        for membership in db_session.execute(
            select(Membership).where(Membership.user_id == user.id)
        ).scalars()
    }
    assert roles == {"space-1": "space.ADMIN", "space-2": "space.MEMBER"}

    created = db_session.execute(
        select(AuditEvent).where(
            AuditEvent.entity_type == "user",
            AuditEvent.entity_id == user.id,
            AuditEvent.event_type == EventType.CREATED.value,
        )
    ).scalar_one()
    assert len(created.space_ids) == 2


def test_create_user_rejects_duplicate_username_and_email(db_session, make_user, password):
    make_user("john-doe")

    same_username = user_service.create_user(
        db_session, username="john-doe", email="other@example.com", password=password
    )
    same_email = user_service.create_user(
        db_session, username="johnny", email="JOHN-DOE@example.com", password=password
    )

    assert same_username.status is Status.CONFLICT
    assert same_email.status is Status.CONFLICT
    count = db_session.execute(select(User)).scalars().all()
    assert len(count) == 1


def test_create_user_with_unknown_space_creates_nothing(db_session, password):
    outcome = user_service.create_user(
        db_session,
        username="ghost",
        email="ghost@example.com",
        password=password,
        space_grants=[SlugGrant("missing")],
    )

    assert outcome.status is Status.NOT_FOUND
    assert user_service.get_user_by_username(db_session, "ghost") is None


def test_create_user_requires_password(db_session):
    outcome = user_service.create_user(
        db_session, username="nopass", email="nopass@example.com", password=""
    )
    assert outcome.status is Status.INVALID


def test_verify_credentials_accepts_username_or_email(db_session, make_user, password):
    user = make_user("john-doe")
    assert user.last_login is None

    by_username = user_service.verify_credentials(db_session, username="john-doe", password=password)
    by_email = user_service.verify_credentials(
        db_session, email="john-doe@example.com", password=password
    )

    assert by_username.ok and by_username.value == user.id
    assert by_email.ok and by_email.value == user.id
    assert user.last_login is not None


def test_verify_credentials_failures_are_indistinguishable(db_session, make_user, password):
    make_user("john-doe")
    inactive = make_user("sleepy")
    inactive.is_active = False
    db_session.commit()

    unknown = user_service.verify_credentials(db_session, username="nobody", password=password)
    wrong = user_service.verify_credentials(db_session, username="john-doe", password="nope")
    disabled = user_service.verify_credentials(db_session, username="sleepy", password=password)
    unknown_email = user_service.verify_credentials(
        db_session, email="nobody@example.com", password=password
    )

    results = {(r.status, r.detail, r.value) for r in (unknown, wrong, disabled, unknown_email)}
    assert results == {(Status.AUTHENTICATION_FAILED, INVALID_CREDENTIALS, None)}


@pytest.mark.parametrize(
    "identifiers",
    [{}, {"username": "john-doe", "email": "john-doe@example.com"}],
)
def test_verify_credentials_needs_exactly_one_identifier(db_session, identifiers):
    with pytest.raises(ValueError):
        user_service.verify_credentials(db_session, password="x", **identifiers)


def test_change_password_rehashes_and_audits(db_session, make_user, password):
    user = make_user("john-doe")

    outcome = user_service.change_password(db_session, user_id=user.id, new_password="n3w-pass")

    assert outcome.ok
    assert verify_password("n3w-pass", user.password_hash)
    assert not user_service.verify_credentials(
        db_session, username="john-doe", password=password
    ).ok
    event = db_session.execute(
        select(AuditEvent).where(AuditEvent.event_type == EventType.PASSWORD_CHANGED.value)
    ).scalar_one()
    assert event.entity_id == user.id
    assert event.author_id == user.id


def test_change_password_errors(db_session, make_user):
    user = make_user("john-doe")

    assert user_service.change_password(db_session, user_id=9999, new_password="x").status is (
        Status.NOT_FOUND
    )
    assert user_service.change_password(db_session, user_id=user.id, new_password=" ").status is (
        Status.INVALID
    )


def test_ask_reset_password_never_reveals_registration(db_session, make_user):
    user = make_user("john-doe")

    known = user_service.ask_reset_password(db_session, "John-Doe@example.com")
    unknown = user_service.ask_reset_password(db_session, "nobody@example.com")

    assert known.ok and unknown.ok
    assert known.detail == unknown.detail == RESET_REQUESTED
    assert known.value is user
    assert unknown.value is None


def test_deactivate_user_terminates_sessions(db_session, make_user):
    user = make_user("john-doe")
    token = session_service.create_session(db_session, user.id)

    outcome = user_service.deactivate_user(db_session, user_id=user.id)

    assert outcome.ok
    assert user.is_active is False
    assert db_session.execute(select(AuthSession)).first() is None
    assert session_service.open_session(db_session, token).status is Status.NOT_FOUND
