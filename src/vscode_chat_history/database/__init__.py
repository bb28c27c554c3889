"""Database access pipeline for VS Code's per-workspace ``state.vscdb``."""

from .breaker import CircuitBreaker
from .connection import ConnectionManager
from .parser import SessionDataParser
from .query import SessionQueryEngine
from .reader import DatabaseReader
from .workspace import WorkspaceResolver

__all__ = [
    "CircuitBreaker",
    "ConnectionManager",
    "DatabaseReader",
    "SessionDataParser",
    "SessionQueryEngine",
    "WorkspaceResolver",
]
