import datetime
import enum

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authspace.core.database import Base
from authspace.models.users import User


class Role(enum.StrEnum):
    MEMBER = "space.MEMBER"
    ADMIN = "space.ADMIN"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]


_ROLE_RANKS = {
    Role.MEMBER: 10,
    Role.ADMIN: 20,
}


def role_rank(value: str) -> int:
    """Rank of a stored role string; values this build does not know rank lowest."""
    try:
        return Role(value).rank
    except ValueError:
        return 0


class Space(Base):
    __tablename__ = "spaces"

    id: Mapped[int] = mapped_column(primary_key=True, init=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True)
    title: Mapped[str]
    parent_space_id: Mapped[int | None] = mapped_column(
        ForeignKey("spaces.id"), default=None, index=True
    )
    is_publicly_browsable: Mapped[bool] = mapped_column(
        default=False, server_default="0"
    )
    invitation_required: Mapped[bool] = mapped_column(default=True, server_default="1")
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=func.now(),
        server_default=func.now(),
        init=False,
    )
    parent: Mapped["Space | None"] = relationship(
        remote_side="Space.id", back_populates="children", init=False
    )
    children: Mapped[list["Space"]] = relationship(back_populates="parent", init=False)


class Membership(Base):
    __tablename__ = "space_users"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    space_id: Mapped[int] = mapped_column(
        ForeignKey("spaces.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    role: Mapped[str] = mapped_column(String(50), default=Role.MEMBER.value)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=func.now(),
        server_default=func.now(),
        init=False,
    )
    user: Mapped[User] = relationship(back_populates="memberships", init=False)
    space: Mapped[Space] = relationship(init=False)
