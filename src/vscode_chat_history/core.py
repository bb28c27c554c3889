"""Core data models for vscode-chat-history."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

import aiosqlite

from .errors import ErrorKind

T = TypeVar("T")


# ── Platform / workspace ─────────────────────────────────────────


@dataclass
class PlatformConfig:
    """Where the host editor keeps its per-user state on this machine."""

    platform: str  # "darwin" | "win32" | "linux"
    base_path: str  # e.g. "~/.config/Code/User"
    workspace_storage_path: str
    separator: str


@dataclass
class PathValidationResult:
    is_valid: bool
    path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class WorkspaceInfo:
    """A workspace folder mapped to its hashed id and state database."""

    workspace_path: str
    workspace_id: str  # 32 lowercase hex chars
    database_path: str
    is_valid: bool
    error: Optional[str] = None


@dataclass
class WorkspaceDatabase:
    workspace_id: str
    database_path: str
    last_modified: datetime
    size: int
    is_accessible: bool


@dataclass
class DatabaseDiscoveryResult:
    found: bool
    databases: list[WorkspaceDatabase] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class DatabaseFileInfo:
    """Stat and signature check of a state database file."""

    path: str
    size: int
    last_modified: datetime
    is_accessible: bool
    version: Optional[str] = None


# ── Connections ──────────────────────────────────────────────────


@dataclass(frozen=True)
class ConnectionConfig:
    read_only: bool = True
    timeout: float = 5.0  # seconds
    must_exist: bool = True


@dataclass
class ConnectionResult:
    success: bool
    connection: Optional[aiosqlite.Connection] = None
    error: Optional[str] = None


# ── Circuit breaker ──────────────────────────────────────────────


class CircuitState(str, Enum):
    CLOSED = "CLOSED"  # normal operation
    OPEN = "OPEN"  # blocking calls
    HALF_OPEN = "HALF_OPEN"  # probing for recovery


@dataclass
class BreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0  # seconds
    monitoring_window: float = 300.0  # seconds
    success_threshold: int = 3
    max_retries: int = 3
    retry_delay: float = 1.0  # base delay, seconds


@dataclass
class BreakerStats:
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: Optional[float]
    last_success_time: Optional[float]
    total_calls: int
    total_failures: int
    total_successes: int
    uptime: float
    last_state_change: float


@dataclass
class BreakerResult(Generic[T]):
    success: bool
    state: CircuitState
    data: Optional[T] = None
    error: Optional[str] = None
    retry_attempt: Optional[int] = None
    rejected: bool = False  # blocked by an OPEN circuit, operation never ran


# ── Parsed sessions ──────────────────────────────────────────────


@dataclass
class ParsedMessage:
    role: str  # "user" | "assistant"
    content: str
    timestamp: Optional[float] = None  # epoch milliseconds


@dataclass
class SessionMetadata:
    """Derived from a session's messages, never stored on its own."""

    message_count: int = 0
    total_characters: int = 0
    user_message_count: int = 0
    assistant_message_count: int = 0
    first_message_timestamp: Optional[float] = None
    last_message_timestamp: Optional[float] = None


@dataclass
class ParsedSession:
    id: str
    messages: list[ParsedMessage] = field(default_factory=list)
    custom_title: Optional[str] = None
    created_at: Optional[str] = None  # ISO 8601
    last_modified: Optional[str] = None  # ISO 8601
    metadata: SessionMetadata = field(default_factory=SessionMetadata)


@dataclass
class ValidationOptions:
    strict_mode: bool = True
    allow_empty_sessions: bool = False
    validate_timestamps: bool = True
    require_session_id: bool = True


@dataclass
class ParsingStats:
    total_sessions: int = 0
    valid_sessions: int = 0
    invalid_sessions: int = 0
    total_messages: int = 0
    processing_time: float = 0.0  # milliseconds


@dataclass
class ParseResult:
    success: bool
    data: list[ParsedSession] = field(default_factory=list)
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    stats: ParsingStats = field(default_factory=ParsingStats)


# ── Queries ──────────────────────────────────────────────────────


@dataclass
class QueryOptions:
    limit: Optional[int] = None
    offset: Optional[int] = None
    include_metadata: bool = False


@dataclass
class QueryMetadata:
    total_sessions: int = 0
    total_size: int = 0  # length of the serialized JSON
    latest_session: Optional[datetime] = None
    oldest_session: Optional[datetime] = None


@dataclass
class Pagination:
    offset: int
    limit: int
    total: int


@dataclass
class SessionPage:
    """Raw session dicts from one fetch, after in-memory pagination."""

    sessions: list[dict[str, Any]]
    pagination: Pagination
    metadata: Optional[QueryMetadata] = None


@dataclass
class SessionQueryResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    execution_time: float = 0.0  # milliseconds


# ── Reader facade ────────────────────────────────────────────────


@dataclass
class ReaderConfig:
    enable_circuit_breaker: bool = True
    strict_parsing: bool = True
    cache_connections: bool = True


@dataclass
class ReaderMetadata:
    total_sessions: int = 0
    processing_time: float = 0.0  # milliseconds
    breaker_state: Optional[CircuitState] = None


@dataclass
class ReaderResult:
    success: bool
    sessions: list[ParsedSession] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    metadata: ReaderMetadata = field(default_factory=ReaderMetadata)


@dataclass
class SelfTestReport:
    platform_resolution: bool = False
    workspace_resolution: bool = False
    database_connection: bool = False
    session_query: bool = False
    data_parsing: bool = False
    overall: bool = False
    errors: list[str] = field(default_factory=list)
