import ssl
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="development", alias="APP_ENV")
    database_url: str = Field(default="sqlite:///./authspace.db", alias="DATABASE_URL")

    pool_size: int = Field(default=5, alias="POOL_SIZE", ge=1)
    pool_max_overflow: int = Field(default=10, alias="POOL_MAX_OVERFLOW", ge=0)
    pool_timeout: int = Field(default=30, alias="POOL_TIMEOUT", ge=1)

    secret: str = Field(alias="SECRET")
    jwt_algo: str = Field(default="HS256", alias="JWT_ALGO")

    session_ttl_minutes: int = Field(default=14 * 24 * 60, alias="SESSION_TTL_MINUTES", ge=1)
    session_cookie_name: str = Field(default="session", alias="SESSION_COOKIE_NAME")
    session_cookie_secure: bool = Field(default=False, alias="SESSION_COOKIE_SECURE")
    session_sweep_interval_seconds: int = Field(
        default=300, alias="SESSION_SWEEP_INTERVAL_SECONDS", ge=0
    )

    invite_ttl_hours: int = Field(default=7 * 24, alias="INVITE_TTL_HOURS", ge=1)
    reset_ttl_minutes: int = Field(default=30, alias="RESET_TTL_MINUTES", ge=1)
    invitation_required: bool = Field(default=False, alias="INVITATION_REQUIRED")
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")

    smtp_host: str = Field(default="127.0.0.1", alias="SMTP_HOST")
    smtp_port: int = Field(default=1025, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_starttls: bool = Field(default=False, alias="SMTP_STARTTLS")
    mail_from: str = Field(default="noreply@example.com", alias="MAIL_FROM")


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore


def get_smtp_ctx() -> ssl.SSLContext:
    return ssl.create_default_context()
