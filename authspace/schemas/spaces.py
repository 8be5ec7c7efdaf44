from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from authspace.models.spaces import Role


class SpaceSummary(BaseModel):
    slug: str
    title: str

    model_config = ConfigDict(
        from_attributes=True,
    )


class SpaceRoleOut(SpaceSummary):
    # None for spaces seen without a membership, e.g. by a superuser.
    role: str | None


class SpaceOut(SpaceSummary):
    id: int
    parent_space_id: int | None
    is_publicly_browsable: bool
    invitation_required: bool


class MemberOut(BaseModel):
    id: int
    username: str
    first_name: str
    last_name: str
    email: str
    role: str
    last_login: datetime | None
    created_at: datetime


class SpaceGrantIn(BaseModel):
    space_slug: str
    role: Role = Role.MEMBER


class ResourceIn(BaseModel):
    slug: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1)
    content: str = ""


class ResourceOut(BaseModel):
    id: int
    space_id: int
    slug: str
    title: str
    content: str
    created_by: int | None
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
    )
