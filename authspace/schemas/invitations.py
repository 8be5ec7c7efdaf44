from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, SecretStr, field_validator

from authspace.models.spaces import Role
from authspace.schemas.spaces import SpaceGrantIn


class InviteIn(BaseModel):
    email: EmailStr
    spaces: list[SpaceGrantIn] = Field(default_factory=list)

    @field_validator("spaces")
    @classmethod
    def _unique_spaces(cls, value: list[SpaceGrantIn]) -> list[SpaceGrantIn]:
        slugs = [grant.space_slug for grant in value]
        if len(set(slugs)) != len(slugs):
            raise ValueError("A space may only be granted once")
        return value


class SpaceInviteIn(BaseModel):
    email: EmailStr
    role: Role = Role.MEMBER


class InvitationCreated(BaseModel):
    id: int
    message: str = "If the email address is valid, instructions will be sent."


class InvitationOut(BaseModel):
    id: int
    email: str
    invited_by: int | None
    expires: datetime
    user_id: int | None

    model_config = ConfigDict(
        from_attributes=True,
    )


class InvitationVerifyIn(BaseModel):
    token: SecretStr


class InvitationVerifyOut(BaseModel):
    email: str
    expires: datetime
