"""Load a declarative dataset into an empty database.

The dataset is a mapping with four optional lists::

    spaces:       [{slug, title, is_publicly_browsable, invitation_required, spaces: [...]}]
    users:        [{id?, username, first_name, last_name, email, password,
                    is_superuser?, spaces: [{slug, role}]}]
    invitations:  [{email, invited_by, spaces: [{slug, role}]}]
    resources:    [{space_slug, slug, title, content, created_by}]

Everything is created through the service layer, acting as the ``root``
system user (id 0), so seeded rows look exactly like rows created at runtime.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy import delete
from sqlalchemy.orm import Session

from authspace.core.context import SecurityContext
from authspace.core.security import TokenSigner
from authspace.models import (
    AuditEvent,
    AuditEventSpace,
    AuthSession,
    Invitation,
    Membership,
    Resource,
    Space,
    SpaceInvitation,
    User,
)
from authspace.models.spaces import Role
from authspace.services import invitation_service, resource_service, space_service, user_service
from authspace.services.results import Outcome
from authspace.services.user_service import SlugGrant

logger = logging.getLogger(__name__)

ROOT_USER_ID = 0

# Children before parents.
_WIPE_ORDER = (
    AuditEventSpace,
    AuditEvent,
    Resource,
    SpaceInvitation,
    Invitation,
    AuthSession,
    Membership,
    User,
    Space,
)


class FixtureError(Exception):
    """A dataset entry could not be imported."""


@dataclass
class FixtureSummary:
    spaces: int = 0
    users: int = 0
    resources: int = 0
    # Raw invitation tokens by email, for mailing or tests.
    invitation_tokens: dict[str, str] = field(default_factory=dict)


def _check(outcome: Outcome, what: str) -> Any:
    if not outcome.ok:
        raise FixtureError(f"{what}: {outcome.detail}")
    return outcome.value


def wipe(db: Session) -> None:
    for model in _WIPE_ORDER:
        db.execute(delete(model).execution_options(synchronize_session=False))
    db.commit()
    db.expunge_all()


def create_root_user(db: Session) -> User:
    # An empty hash never verifies: root cannot log in.
    root = User(
        username="root",
        email="noreply@localhost",
        password_hash="",
        is_superuser=True,
        is_service_account=True,
    )
    root.id = ROOT_USER_ID
    db.add(root)
    db.commit()
    return root


def _slug_grants(entries: Iterable[Mapping[str, Any]] | None) -> list[SlugGrant]:
    return [
        SlugGrant(space_slug=entry["slug"], role=Role(entry.get("role", Role.MEMBER)))
        for entry in entries or ()
    ]


def _import_spaces(
    db: Session,
    entries: Iterable[Mapping[str, Any]],
    parent_space_id: int | None,
    summary: FixtureSummary,
) -> None:
    for entry in entries:
        space = _check(
            space_service.create_space(
                db,
                slug=entry["slug"],
                title=entry.get("title", entry["slug"]),
                parent_space_id=parent_space_id,
                is_publicly_browsable=entry.get("is_publicly_browsable", False),
                invitation_required=entry.get("invitation_required", True),
                author_id=ROOT_USER_ID,
            ),
            f"space {entry['slug']}",
        )
        summary.spaces += 1
        _import_spaces(db, entry.get("spaces") or (), space.id, summary)


def _user_id(db: Session, ref: int | str | None) -> int | None:
    if ref is None or isinstance(ref, int):
        return ref
    user = user_service.get_user_by_username(db, ref)
    if user is None:
        raise FixtureError(f"unknown user {ref!r}")
    return user.id


def load_fixtures(db: Session, data: Mapping[str, Any], signer: TokenSigner) -> FixtureSummary:
    summary = FixtureSummary()
    wipe(db)
    create_root_user(db)

    _import_spaces(db, data.get("spaces") or (), None, summary)

    for entry in data.get("users") or ():
        _check(
            user_service.create_user(
                db,
                user_id=entry.get("id"),
                username=entry["username"],
                first_name=entry.get("first_name", ""),
                last_name=entry.get("last_name", ""),
                email=entry["email"],
                password=entry["password"],
                is_superuser=entry.get("is_superuser", False),
                space_grants=_slug_grants(entry.get("spaces")),
                author_id=ROOT_USER_ID,
            ),
            f"user {entry['username']}",
        )
        summary.users += 1

    for entry in data.get("invitations") or ():
        grants = _check(
            user_service.resolve_slug_grants(db, _slug_grants(entry.get("spaces"))),
            f"invitation {entry['email']}",
        )
        _, raw_token = _check(
            invitation_service.create_invitation(
                db,
                invited_by=_user_id(db, entry.get("invited_by", ROOT_USER_ID)),
                email=entry["email"],
                grants=grants,
                signer=signer,
            ),
            f"invitation {entry['email']}",
        )
        summary.invitation_tokens[entry["email"]] = raw_token

    resources = list(data.get("resources") or ())
    if resources:
        # Root acts as superuser over every space that now exists.
        context = SecurityContext.build(
            effective_user_id=ROOT_USER_ID,
            impersonated_by=None,
            visible_space_ids=[space.id for space in space_service.list_visible_spaces(db)],
            is_superuser=True,
        )
        for entry in resources:
            space = space_service.get_space_by_slug(db, entry["space_slug"], unfiltered=True)
            if space is None:
                raise FixtureError(f"resource {entry['slug']}: unknown space {entry['space_slug']!r}")
            resource = _check(
                resource_service.create_resource(
                    db,
                    context,
                    space_id=space.id,
                    slug=entry["slug"],
                    title=entry.get("title", entry["slug"]),
                    content=entry.get("content", ""),
                ),
                f"resource {entry['slug']}",
            )
            created_by = _user_id(db, entry.get("created_by"))
            if created_by is not None and created_by != resource.created_by:
                resource.created_by = created_by
                db.commit()
            summary.resources += 1

    logger.info(
        "Fixtures loaded: %s spaces, %s users, %s invitations, %s resources",
        summary.spaces,
        summary.users,
        len(summary.invitation_tokens),
        summary.resources,
    )
    return summary


def load_fixtures_file(
    db: Session, path: str | Path, signer: TokenSigner
) -> FixtureSummary:
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    return load_fixtures(db, data, signer)
