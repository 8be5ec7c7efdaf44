from datetime import timedelta
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session

from authspace.core.config import Settings, get_settings
from authspace.core.database import get_db
from authspace.core.security import InvalidToken, TokenSigner, get_token_signer, hash_token
from authspace.models.users import User
from authspace.schemas.password_reset import PasswordChangeIn, PasswordForgotIn
from authspace.services import user_service
from authspace.services.email_service import send_password_changed, send_password_reset
from authspace.services.user_service import RESET_REQUESTED

router = APIRouter(prefix="/password", tags=["auth"])

INVALID_RESET_TOKEN = "Invalid or expired reset token"


def _password_fingerprint(user: User) -> str:
    # Changes with every password update, so a reset link works once.
    return hash_token(user.password_hash or "")[:16]


def reset_link(raw_token: str) -> str:
    base_url = get_settings().public_base_url.rstrip("/")
    return f"{base_url}/change_password/?{urlencode({'token': raw_token})}"


@router.post("/forgot")
def forgot_password(
    payload: PasswordForgotIn,
    bg: BackgroundTasks,
    db: Session = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
    settings: Settings = Depends(get_settings),
):
    outcome = user_service.ask_reset_password(db, payload.email)
    user = outcome.value
    if user is not None:
        raw_token = signer.sign(
            {"user_id": user.id, "pwd": _password_fingerprint(user)},
            timedelta(minutes=settings.reset_ttl_minutes),
        )
        bg.add_task(send_password_reset, user.email, reset_link(raw_token))
    return {"message": RESET_REQUESTED}


@router.post("/change")
def change_password(
    payload: PasswordChangeIn,
    bg: BackgroundTasks,
    db: Session = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
):
    try:
        claims = signer.verify(payload.token.get_secret_value())
    except InvalidToken:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=INVALID_RESET_TOKEN,
        )
    user_id = claims.get("user_id")
    user = db.get(User, user_id) if isinstance(user_id, int) else None
    if user is None or not user.is_active or claims.get("pwd") != _password_fingerprint(user):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=INVALID_RESET_TOKEN,
        )

    password = payload.password.get_secret_value()
    if password != payload.password_confirm.get_secret_value():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Passwords do not match",
        )
    outcome = user_service.change_password(db, user_id=user.id, new_password=password)
    if not outcome.ok:
        raise HTTPException(status_code=outcome.status_code, detail=outcome.detail)
    bg.add_task(send_password_changed, user.email)
    return {"message": "Password updated"}
