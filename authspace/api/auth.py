from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from authspace.api.deps import (
    RequestScope,
    clear_session_cookie,
    get_request_scope,
    require_user,
    set_session_cookie,
)
from authspace.core.config import Settings, get_settings
from authspace.core.database import get_db
from authspace.schemas.spaces import SpaceRoleOut
from authspace.schemas.users import LoginIn, MeOut, UserOut
from authspace.services import session_service, space_service

router = APIRouter(tags=["auth"])


@router.post("/login")
def login(
    payload: LoginIn,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = session_service.authenticate(
        db,
        username=payload.username,
        email=payload.email,
        password=payload.password.get_secret_value(),
    )
    response.headers["Cache-Control"] = "no-store"
    if not result.ok:
        clear_session_cookie(response, settings)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"Cache-Control": "no-store"},
        )

    set_session_cookie(response, settings, result.value)
    return {"message": "ok"}


@router.post("/logout")
def logout(
    response: Response,
    scope: RequestScope = Depends(get_request_scope),
    settings: Settings = Depends(get_settings),
):
    if scope.session_token:
        session_service.logout(scope.db, scope.session_token)
    response.headers["Cache-Control"] = "no-store"
    clear_session_cookie(response, settings)
    return {"message": "ok"}


@router.get("/me", response_model=MeOut)
def me(scope: RequestScope = Depends(require_user)):
    view = scope.view
    return MeOut(
        user=UserOut.model_validate(view.effective_user),
        impersonated_by=(
            UserOut.model_validate(view.impersonated_by) if view.impersonated_by else None
        ),
        visible_space_ids=list(view.visible_space_ids),
        spaces=[
            SpaceRoleOut(slug=space.slug, title=space.title, role=role)
            for space, role in space_service.list_space_roles(scope.db, view.effective_user.id)
        ],
    )
