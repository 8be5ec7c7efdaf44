from pydantic import BaseModel, EmailStr, SecretStr


class PasswordForgotIn(BaseModel):
    email: EmailStr


class PasswordChangeIn(BaseModel):
    token: SecretStr
    password: SecretStr
    password_confirm: SecretStr
