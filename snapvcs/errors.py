from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    NO_CHANGES = "no_changes"
    PROTECTED_STATE = "protected_state"
    NOT_STAGED = "not_staged"
    STORAGE_IO = "storage_io"


class VcsError(Exception):
    """Raised when a failed Result is unwrapped, or when storage is unusable."""

    def __init__(self, kind: ErrorKind, detail: str = "") -> None:
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of a core operation.

    Expected failures (missing branch, nothing to commit, ...) are returned
    as values instead of being raised. The result is truthy on success.
    """

    value: T | None = None
    error: ErrorKind | None = None
    detail: str = ""

    @classmethod
    def ok(cls, value: Any = None) -> "Result[Any]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, detail: str = "") -> "Result[Any]":
        return cls(error=kind, detail=detail)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.is_ok

    def unwrap(self) -> T:
        if self.error is not None:
            raise VcsError(self.error, self.detail)
        return self.value  # type: ignore[return-value]
