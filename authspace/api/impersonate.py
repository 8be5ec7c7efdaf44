from fastapi import APIRouter, Depends

from authspace.api.deps import RequestScope, raise_for_outcome, require_user
from authspace.services import session_service

router = APIRouter(prefix="/impersonate", tags=["auth"])


@router.post("/quit")
def quit_impersonation(scope: RequestScope = Depends(require_user)):
    outcome = session_service.exit_impersonate(scope.db, scope.session_token)
    raise_for_outcome(outcome)
    return {"message": outcome.detail}


@router.post("/{username}")
def start_impersonation(username: str, scope: RequestScope = Depends(require_user)):
    raise_for_outcome(session_service.impersonate(scope.db, scope.session_token, username))
    return {"message": "ok", "username": username}
