import datetime
import enum

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authspace.core.database import Base
from authspace.models.users import User


class EventType(enum.StrEnum):
    CREATED = "CREATED"
    DELETED = "DELETED"
    DEACTIVATED = "DEACTIVATED"
    REDEEMED = "REDEEMED"
    MEMBERSHIP_GRANTED = "MEMBERSHIP_GRANTED"
    MEMBERSHIP_REVOKED = "MEMBERSHIP_REVOKED"
    IMPERSONATION_STARTED = "IMPERSONATION_STARTED"
    IMPERSONATION_ENDED = "IMPERSONATION_ENDED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"


class AuditEvent(Base):
    """Append-only; rows are never updated or deleted by the engine."""

    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(primary_key=True, init=False)
    entity_type: Mapped[str] = mapped_column(String(50), index=True)
    entity_id: Mapped[int | None]
    event_type: Mapped[str] = mapped_column(String(50))
    # NULL author means anonymous or system.
    author_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), default=None
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=func.now(),
        server_default=func.now(),
        init=False,
        index=True,
    )
    author: Mapped[User | None] = relationship(lazy="joined", init=False)
    spaces: Mapped[list["AuditEventSpace"]] = relationship(
        cascade="all, delete-orphan",
        lazy="selectin",
        init=False,
    )

    @property
    def space_ids(self) -> frozenset[int]:
        return frozenset(link.space_id for link in self.spaces)


class AuditEventSpace(Base):
    __tablename__ = "audit_event_spaces"

    event_id: Mapped[int] = mapped_column(
        ForeignKey("audit_events.id", ondelete="CASCADE"), primary_key=True, init=False
    )
    space_id: Mapped[int] = mapped_column(
        ForeignKey("spaces.id", ondelete="CASCADE"), primary_key=True, index=True
    )
