import enum
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class Status(enum.Enum):
    OK = (200, "OK")
    INVALID = (400, "Invalid")
    AUTHENTICATION_FAILED = (401, "Authentication failed")
    FORBIDDEN = (403, "Forbidden")
    NOT_FOUND = (404, "Not found")
    CONFLICT = (409, "Conflict")
    EXPIRED = (410, "Expired")

    @property
    def code(self) -> int:
        return self.value[0]

    @property
    def label(self) -> str:
        return self.value[1]


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of an engine operation whose failures callers are expected to branch on."""

    status: Status
    detail: str
    value: T | None = None

    @property
    def ok(self) -> bool:
        return self.status is Status.OK

    @property
    def status_code(self) -> int:
        return self.status.code

    @classmethod
    def success(cls, value: T | None = None, detail: str = "OK") -> "Outcome[T]":
        return cls(Status.OK, detail, value)

    @classmethod
    def failure(cls, status: Status, detail: str | None = None) -> "Outcome[T]":
        return cls(status, detail or status.label)
