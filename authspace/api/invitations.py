from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from authspace.api.deps import RequestScope, get_request_scope, raise_for_outcome, require_user
from authspace.core.config import Settings, get_settings
from authspace.core.security import TokenSigner, get_token_signer
from authspace.models.spaces import Role
from authspace.schemas.invitations import (
    InvitationCreated,
    InvitationOut,
    InvitationVerifyIn,
    InvitationVerifyOut,
    InviteIn,
)
from authspace.schemas.users import SignupIn, SignupOut
from authspace.services import invitation_service, space_service, user_service
from authspace.services.email_service import send_invitation
from authspace.services.space_service import SpaceGrant
from authspace.services.user_service import SlugGrant

router = APIRouter(tags=["invitations"])


def signup_link(raw_token: str) -> str:
    base_url = get_settings().public_base_url.rstrip("/")
    return f"{base_url}/signup/?{urlencode({'token': raw_token})}"


@router.get("/invitations", response_model=list[InvitationOut])
def list_invitations(scope: RequestScope = Depends(require_user)):
    invited_by = None if scope.context.is_superuser else scope.context.effective_user_id
    return invitation_service.list_invitations(scope.db, invited_by=invited_by)


@router.post("/invitations", response_model=InvitationCreated, status_code=status.HTTP_201_CREATED)
def create_invitation(
    payload: InviteIn,
    bg: BackgroundTasks,
    scope: RequestScope = Depends(require_user),
    signer: TokenSigner = Depends(get_token_signer),
):
    grants: list[SpaceGrant] = []
    for grant in payload.spaces:
        space = space_service.get_space_by_slug(scope.db, grant.space_slug)
        if space is None:
            raise HTTPException(status_code=404, detail=f"Space not found: {grant.space_slug}")
        grants.append(SpaceGrant(space_id=space.id, role=grant.role))
    raise_for_outcome(invitation_service.check_grantable(scope.db, scope.context, grants))

    invitation, raw_token = raise_for_outcome(
        invitation_service.create_invitation(
            scope.db,
            invited_by=scope.context.effective_user_id,
            email=payload.email,
            grants=grants,
            signer=signer,
        )
    )
    bg.add_task(send_invitation, invitation.email, signup_link(raw_token))
    return InvitationCreated(id=invitation.id)


@router.post("/invitations/verify", response_model=InvitationVerifyOut)
def verify_invitation(
    body: InvitationVerifyIn,
    scope: RequestScope = Depends(get_request_scope),
    signer: TokenSigner = Depends(get_token_signer),
):
    invitation = raise_for_outcome(
        invitation_service.resolve_invitation_token(
            scope.db, body.token.get_secret_value(), signer
        )
    )
    return InvitationVerifyOut(email=invitation.email, expires=invitation.expires)


@router.post("/invitations/accept")
def accept_invitation(
    body: InvitationVerifyIn,
    scope: RequestScope = Depends(require_user),
    signer: TokenSigner = Depends(get_token_signer),
):
    invitation = raise_for_outcome(
        invitation_service.resolve_invitation_token(
            scope.db, body.token.get_secret_value(), signer
        )
    )
    outcome = invitation_service.accept_invitation(
        scope.db,
        invitation_id=invitation.id,
        user_id=scope.context.effective_user_id,
    )
    raise_for_outcome(outcome)
    return {"message": "Invitation accepted"}


@router.post("/signup", response_model=SignupOut, status_code=status.HTTP_201_CREATED)
def signup(
    payload: SignupIn,
    scope: RequestScope = Depends(get_request_scope),
    signer: TokenSigner = Depends(get_token_signer),
    settings: Settings = Depends(get_settings),
):
    if scope.view is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already signed in")
    password = payload.password.get_secret_value()

    if payload.token is not None:
        invitation = raise_for_outcome(
            invitation_service.resolve_invitation_token(
                scope.db, payload.token.get_secret_value(), signer
            )
        )
        outcome = invitation_service.redeem_invitation(
            scope.db,
            invitation_id=invitation.id,
            username=payload.username,
            first_name=payload.first_name,
            last_name=payload.last_name,
            password=password,
        )
        return SignupOut(user_id=raise_for_outcome(outcome))

    if settings.invitation_required:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invitation required")
    space = space_service.get_space_by_slug(scope.db, payload.space, unfiltered=True)
    if space is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Space not found")
    if space.invitation_required or not space.is_publicly_browsable:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This space requires an invitation",
        )

    outcome = user_service.create_user(
        scope.db,
        username=payload.username,
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        password=password,
        space_grants=[SlugGrant(space_slug=space.slug, role=Role.MEMBER)],
    )
    return SignupOut(user_id=raise_for_outcome(outcome))
