"""Error taxonomy shared by the database access pipeline."""

from enum import Enum


class ErrorKind(str, Enum):
    """Classifies a failure so callers can decide what to do with it.

    Only ``CONNECTION`` and ``QUERY`` failures are retried by the circuit
    breaker; everything else is a data or configuration problem that a retry
    would not change.
    """

    PLATFORM = "platform"
    RESOLUTION = "resolution"
    CONNECTION = "connection"
    QUERY = "query"
    INTEGRITY = "integrity"
    NOT_FOUND = "not_found"
    PARSE = "parse"
    CIRCUIT_OPEN = "circuit_open"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.CONNECTION, ErrorKind.QUERY)


class ChatHistoryError(Exception):
    """Base class for errors raised inside the pipeline."""


class PlatformError(ChatHistoryError):
    """Unsupported OS or missing platform environment."""


class DatabaseAccessError(ChatHistoryError):
    """A dependency failure the circuit breaker should see."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.CONNECTION):
        super().__init__(message)
        self.kind = kind
