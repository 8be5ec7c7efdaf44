from fastapi import APIRouter, BackgroundTasks, Depends, Response, status

from authspace.api.deps import (
    RequestScope,
    get_request_scope,
    get_visible_space,
    raise_for_outcome,
    require_user,
)
from authspace.api.invitations import signup_link
from authspace.core.security import TokenSigner, get_token_signer
from authspace.schemas.invitations import InvitationCreated, InvitationOut, SpaceInviteIn
from authspace.schemas.spaces import MemberOut, ResourceIn, ResourceOut, SpaceOut, SpaceSummary
from authspace.services import invitation_service, resource_service, space_service
from authspace.services.email_service import send_invitation
from authspace.services.space_service import SpaceGrant

router = APIRouter(tags=["spaces"])


@router.get("/explore", response_model=list[SpaceSummary])
def explore(scope: RequestScope = Depends(get_request_scope)):
    return space_service.list_publicly_browsable(scope.db)


@router.get("/spaces", response_model=list[SpaceOut])
def list_spaces(scope: RequestScope = Depends(get_request_scope)):
    return space_service.list_visible_spaces(scope.db)


@router.get("/spaces/{space_slug}/members", response_model=list[MemberOut])
def list_members(space_slug: str, scope: RequestScope = Depends(require_user)):
    space = get_visible_space(space_slug, scope)
    return [
        MemberOut(
            id=user.id,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            role=membership.role,
            last_login=user.last_login,
            created_at=user.created_at,
        )
        for user, membership in space_service.list_members(scope.db, space.id)
    ]


@router.get("/spaces/{space_slug}/invitations", response_model=list[InvitationOut])
def list_space_invitations(space_slug: str, scope: RequestScope = Depends(require_user)):
    space = get_visible_space(space_slug, scope)
    return invitation_service.list_space_invitations(scope.db, space.id)


@router.post(
    "/spaces/{space_slug}/invitations",
    response_model=InvitationCreated,
    status_code=status.HTTP_201_CREATED,
)
def invite_to_space(
    space_slug: str,
    payload: SpaceInviteIn,
    bg: BackgroundTasks,
    scope: RequestScope = Depends(require_user),
    signer: TokenSigner = Depends(get_token_signer),
):
    space = get_visible_space(space_slug, scope)
    grants = [SpaceGrant(space_id=space.id, role=payload.role)]
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


@router.get("/spaces/{space_slug}/resources", response_model=list[ResourceOut])
def list_resources(space_slug: str, scope: RequestScope = Depends(get_request_scope)):
    space = get_visible_space(space_slug, scope)
    return resource_service.list_resources(scope.db, space_id=space.id)


@router.post(
    "/spaces/{space_slug}/resources",
    response_model=ResourceOut,
    status_code=status.HTTP_201_CREATED,
)
def create_resource(
    space_slug: str,
    payload: ResourceIn,
    scope: RequestScope = Depends(require_user),
):
    space = get_visible_space(space_slug, scope)
    return raise_for_outcome(
        resource_service.create_resource(
            scope.db,
            scope.context,
            space_id=space.id,
            slug=payload.slug,
            title=payload.title,
            content=payload.content,
        )
    )


@router.delete(
    "/spaces/{space_slug}/resources/{resource_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_resource(
    space_slug: str,
    resource_id: int,
    scope: RequestScope = Depends(require_user),
) -> Response:
    space = get_visible_space(space_slug, scope)
    raise_for_outcome(
        resource_service.delete_resource(scope.db, scope.context, resource_id, space_id=space.id)
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
