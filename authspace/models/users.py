import datetime
import enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authspace.core.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, init=False)
    username: Mapped[str] = mapped_column(String(150), unique=True)
    email: Mapped[str] = mapped_column(unique=True)
    password_hash: Mapped[str | None] = mapped_column(default=None, repr=False)
    first_name: Mapped[str] = mapped_column(default="", server_default="")
    last_name: Mapped[str] = mapped_column(default="", server_default="")
    is_active: Mapped[bool] = mapped_column(default=True, server_default="1")
    is_superuser: Mapped[bool] = mapped_column(default=False, server_default="0")
    is_service_account: Mapped[bool] = mapped_column(default=False, server_default="0")
    last_login: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=func.now(),
        server_default=func.now(),
        init=False,
    )
    memberships: Mapped[list["Membership"]] = relationship(  # type: ignore  # noqa: F821
        back_populates="user",
        cascade="all, delete-orphan",
        init=False,
    )


class SessionState(enum.StrEnum):
    ACTIVE = "active"
    IMPERSONATING = "impersonating"


class AuthSession(Base):
    """Server-side session; ``id`` is the SHA-256 digest of the cookie token."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, repr=False)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    impersonate_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), default=None
    )
    last_used_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=func.now(),
        server_default=func.now(),
        init=False,
    )
    user: Mapped[User] = relationship(foreign_keys=[user_id], init=False)
    impersonate_user: Mapped[User | None] = relationship(
        foreign_keys=[impersonate_user_id], init=False
    )

    __table_args__ = (
        CheckConstraint(
            "impersonate_user_id IS NULL OR impersonate_user_id <> user_id",
            name="ck_sessions_no_self_impersonation",
        ),
    )

    @property
    def state(self) -> SessionState:
        if self.impersonate_user_id is None:
            return SessionState.ACTIVE
        return SessionState.IMPERSONATING

    def start_impersonation(self, target: User) -> None:
        if self.state is not SessionState.ACTIVE:
            raise ValueError("session is already impersonating")
        if target.id == self.user_id:
            raise ValueError("a session cannot impersonate its own user")
        self.impersonate_user = target
        self.impersonate_user_id = target.id

    def stop_impersonation(self) -> None:
        self.impersonate_user = None
        self.impersonate_user_id = None


class Invitation(Base):
    __tablename__ = "invitations"

    id: Mapped[int] = mapped_column(primary_key=True, init=False)
    email: Mapped[str] = mapped_column(index=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, repr=False)
    expires: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    invited_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), default=None
    )
    # Set exactly once, when the invitation is redeemed.
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), default=None
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=func.now(),
        server_default=func.now(),
        init=False,
    )
    grants: Mapped[list["SpaceInvitation"]] = relationship(
        back_populates="invitation",
        cascade="all, delete-orphan",
        init=False,
    )
    inviter: Mapped[User | None] = relationship(foreign_keys=[invited_by], init=False)

    @property
    def is_used(self) -> bool:
        return self.user_id is not None


class SpaceInvitation(Base):
    __tablename__ = "space_invitations"

    invitation_id: Mapped[int] = mapped_column(
        ForeignKey("invitations.id", ondelete="CASCADE"), primary_key=True, init=False
    )
    space_id: Mapped[int] = mapped_column(
        ForeignKey("spaces.id", ondelete="CASCADE"), primary_key=True
    )
    role: Mapped[str] = mapped_column(String(50))
    invitation: Mapped[Invitation] = relationship(back_populates="grants", init=False)
