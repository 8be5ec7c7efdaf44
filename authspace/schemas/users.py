from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, SecretStr, model_validator

from authspace.schemas.spaces import SpaceRoleOut


class LoginIn(BaseModel):
    username: str | None = None
    email: EmailStr | None = None
    password: SecretStr

    @model_validator(mode="after")
    def _one_identifier(self) -> "LoginIn":
        if bool(self.username) == bool(self.email):
            raise ValueError("Provide either username or email")
        return self


class UserOut(BaseModel):
    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    is_superuser: bool
    last_login: datetime | None
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
    )


class MeOut(BaseModel):
    user: UserOut
    impersonated_by: UserOut | None
    visible_space_ids: list[int]
    spaces: list[SpaceRoleOut]


class SignupIn(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    first_name: str = Field(default="", max_length=150)
    last_name: str = Field(default="", max_length=150)
    password: SecretStr
    # Invitation token; when absent this is an open signup into ``space``.
    token: SecretStr | None = None
    email: EmailStr | None = None
    space: str | None = None

    @model_validator(mode="after")
    def _open_signup_fields(self) -> "SignupIn":
        if self.token is None and (self.email is None or not self.space):
            raise ValueError("Open signup needs an email and a space")
        return self


class SignupOut(BaseModel):
    user_id: int
