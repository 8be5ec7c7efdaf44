from pathlib import Path

import pytest
from sqlalchemy import func, select

from authspace.bootstrap.fixtures import (
    ROOT_USER_ID,
    FixtureError,
    load_fixtures,
    load_fixtures_file,
)
from authspace.models.resources import Resource
from authspace.models.spaces import Membership, Space
from authspace.models.users import Invitation, User
from authspace.services import invitation_service, user_service

FIXTURES_FILE = Path(__file__).resolve().parents[2] / "fixtures.yaml"


def _count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def test_load_fixtures_file_seeds_through_services(db_session, make_user, signer):
    make_user("leftover")

    summary = load_fixtures_file(db_session, FIXTURES_FILE, signer)

    assert (summary.spaces, summary.users, summary.resources) == (4, 3, 2)
    assert user_service.get_user_by_username(db_session, "leftover") is None
    assert _count(db_session, Space) == 4
    assert _count(db_session, User) == 4
    assert _count(db_session, Resource) == 2
    assert _count(db_session, Invitation) == 1

    team = db_session.execute(select(Space).where(Space.slug == "space-1-team")).scalar_one()
    assert team.parent.slug == "space-1"

    john = user_service.get_user_by_username(db_session, "john-doe")
    roles = {
        m.space.slug: m.role
        for m in db_session.execute(
            select(Membership).where(Membership.user_id == john.id)
        ).scalars()
    }
    assert roles == {"space-1": "space.ADMIN", "space-1-team": "space.MEMBER"}
    assert user_service.verify_credentials(db_session, username="john-doe", password="password").ok

    welcome = db_session.execute(select(Resource).where(Resource.slug == "welcome")).scalar_one()
    assert welcome.created_by == john.id

    token = summary.invitation_tokens["alice@example.com"]
    invitation = invitation_service.resolve_invitation_token(db_session, token, signer).value
    assert invitation.invited_by == john.id


def test_root_user_exists_and_cannot_log_in(db_session, signer):
    load_fixtures(db_session, {}, signer)

    root = db_session.get(User, ROOT_USER_ID)
    assert root.username == "root"
    assert root.is_superuser and root.is_service_account
    assert not user_service.verify_credentials(db_session, username="root", password="").ok


def test_unknown_space_in_dataset_is_reported(db_session, signer):
    data = {
        "users": [
            {
                "username": "lost",
                "email": "lost@example.com",
                "password": "password",
                "spaces": [{"slug": "nowhere", "role": "space.MEMBER"}],
            }
        ]
    }

    with pytest.raises(FixtureError, match="nowhere"):
        load_fixtures(db_session, data, signer)
