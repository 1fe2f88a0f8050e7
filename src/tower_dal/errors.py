"""Error types for store, entity and cursor operations."""

from enum import StrEnum
from typing import final


class ErrorKind(StrEnum):
    """Classification of data-access errors."""

    CONNECTION = "connection"
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    TIMEOUT = "timeout"
    ABORTED = "aborted"
    PRECONDITION = "precondition"
    PROVIDER = "provider"


@final
class DalError(Exception):
    """Base error for all data-access operations."""

    __slots__ = ("kind", "message", "source")

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.PROVIDER,
        source: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.source = source

    def __repr__(self) -> str:
        return f"DalError({self.message!r}, kind={self.kind!r})"

    @property
    def is_not_found(self) -> bool:
        """Whether the target document does not exist."""
        return self.kind is ErrorKind.NOT_FOUND
