"""Per-request plumbing: session cookie resolution and the security context.

``get_request_scope`` is the authorization context binder. It holds one ORM
session (one pooled connection) for the request, resolves the session cookie,
binds the resulting ``SecurityContext`` to that session and unbinds it when
the request finishes, whether the handler returned or raised.
"""

from collections.abc import Generator
from dataclasses import dataclass
from typing import TypeVar

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from authspace.core.config import Settings, get_settings
from authspace.core.context import SecurityContext, bind_security_context
from authspace.core.database import get_db
from authspace.models.spaces import Space
from authspace.services import session_service, space_service
from authspace.services.results import Outcome
from authspace.services.session_service import SessionView

T = TypeVar("T")


@dataclass(frozen=True)
class RequestScope:
    db: Session
    context: SecurityContext
    session_token: str | None
    view: SessionView | None


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(key=settings.session_cookie_name, path="/")


def set_session_cookie(response: Response, settings: Settings, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        max_age=settings.session_ttl_minutes * 60,
        path="/",
    )


def get_request_scope(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Generator[RequestScope]:
    token = request.cookies.get(settings.session_cookie_name)
    view: SessionView | None = None
    if token:
        opened = session_service.open_session(db, token)
        if opened.ok:
            view = opened.value
        else:
            clear_session_cookie(response, settings)
            token = None

    if view is not None:
        context = view.context
    else:
        context = SecurityContext.anonymous(space_service.public_space_ids(db))

    with bind_security_context(db, context):
        try:
            yield RequestScope(db=db, context=context, session_token=token, view=view)
        finally:
            session_service.close_session(db)


def require_user(scope: RequestScope = Depends(get_request_scope)) -> RequestScope:
    if scope.view is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return scope


def raise_for_outcome(outcome: Outcome[T]) -> T | None:
    if not outcome.ok:
        raise HTTPException(status_code=outcome.status_code, detail=outcome.detail)
    return outcome.value


def get_visible_space(space_slug: str, scope: RequestScope) -> Space:
    # Row filters hide spaces outside the context, so those read as missing too.
    space = space_service.get_space_by_slug(scope.db, space_slug)
    if space is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Space not found")
    return space
