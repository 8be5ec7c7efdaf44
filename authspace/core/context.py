"""Request-scoped security context and the row filters that enforce it.

A ``SecurityContext`` is bound to one ORM session for the length of one
request. While bound, every top-level SELECT that touches a space-scoped
entity is narrowed to the context's visible spaces, so business queries
never have to repeat the membership check by hand. Unbinding is done in a
``finally`` block: a pooled connection never carries a context into the
next request.

Engine-internal lookups that must see every row (credential checks,
invitation redemption, seeding) pass ``execution_options(include_all_spaces=True)``.
"""

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from authspace.models import (
    AuditEvent,
    AuditEventSpace,
    Membership,
    Resource,
    Space,
    SpaceInvitation,
)

logger = logging.getLogger(__name__)

INCLUDE_ALL_SPACES = "include_all_spaces"
UNFILTERED = {INCLUDE_ALL_SPACES: True}

_CONTEXT_KEY = "authspace.security_context"


@dataclass(frozen=True)
class SecurityContext:
    effective_user_id: int | None
    impersonated_by: int | None
    visible_space_ids: tuple[int, ...]
    is_superuser: bool = False

    @classmethod
    def build(
        cls,
        *,
        effective_user_id: int | None,
        impersonated_by: int | None,
        visible_space_ids: Iterable[int],
        is_superuser: bool = False,
    ) -> "SecurityContext":
        return cls(
            effective_user_id=effective_user_id,
            impersonated_by=impersonated_by,
            visible_space_ids=tuple(sorted(set(visible_space_ids))),
            is_superuser=is_superuser,
        )

    @classmethod
    def anonymous(cls, public_space_ids: Iterable[int]) -> "SecurityContext":
        return cls.build(
            effective_user_id=None,
            impersonated_by=None,
            visible_space_ids=public_space_ids,
        )

    @property
    def is_anonymous(self) -> bool:
        return self.effective_user_id is None

    def can_see(self, space_id: int) -> bool:
        return space_id in self.visible_space_ids


def get_security_context(db: Session) -> SecurityContext | None:
    return db.info.get(_CONTEXT_KEY)


@contextmanager
def bind_security_context(db: Session, context: SecurityContext) -> Iterator[SecurityContext]:
    if _CONTEXT_KEY in db.info:
        raise RuntimeError("A security context is already bound to this session")
    db.info[_CONTEXT_KEY] = context
    try:
        yield context
    finally:
        clear_security_context(db)


def clear_security_context(db: Session) -> None:
    db.info.pop(_CONTEXT_KEY, None)


def _row_filters(context: SecurityContext) -> list:
    ids = list(context.visible_space_ids)
    filters = [
        with_loader_criteria(Space, Space.id.in_(ids), include_aliases=True),
        with_loader_criteria(Membership, Membership.space_id.in_(ids), include_aliases=True),
        with_loader_criteria(
            SpaceInvitation, SpaceInvitation.space_id.in_(ids), include_aliases=True
        ),
        with_loader_criteria(Resource, Resource.space_id.in_(ids), include_aliases=True),
    ]
    if not context.is_superuser:
        filters.append(
            with_loader_criteria(
                AuditEvent,
                AuditEvent.spaces.any(AuditEventSpace.space_id.in_(ids)),
                include_aliases=True,
            )
        )
    return filters


@event.listens_for(Session, "do_orm_execute")
def _apply_row_filters(execute_state: ORMExecuteState) -> None:
    if (
        not execute_state.is_select
        or execute_state.is_column_load
        or execute_state.is_relationship_load
        or execute_state.execution_options.get(INCLUDE_ALL_SPACES, False)
    ):
        return
    context = execute_state.session.info.get(_CONTEXT_KEY)
    if context is None:
        return
    execute_state.statement = execute_state.statement.options(*_row_filters(context))
