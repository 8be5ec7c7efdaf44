from authspace.core.database import Base
from authspace.models.audit import AuditEvent, AuditEventSpace, EventType
from authspace.models.resources import Resource
from authspace.models.spaces import Membership, Role, Space
from authspace.models.users import (
    AuthSession,
    Invitation,
    SessionState,
    SpaceInvitation,
    User,
)

__all__ = [
    "AuditEvent",
    "AuditEventSpace",
    "AuthSession",
    "Base",
    "EventType",
    "Invitation",
    "Membership",
    "Resource",
    "Role",
    "SessionState",
    "Space",
    "SpaceInvitation",
    "User",
]
