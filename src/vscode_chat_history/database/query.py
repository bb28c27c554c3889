"""Query layer for the chat sessions stored in ``ItemTable``.

VS Code stores all chat sessions of a workspace as one JSON array under a
single key, so every view here is derived in memory from one lookup.
"""

import json
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import aiosqlite

from ..core import Pagination, QueryMetadata, QueryOptions, SessionPage, SessionQueryResult
from ..errors import ErrorKind
from .connection import ConnectionManager

logger = logging.getLogger(__name__)

INTERACTIVE_SESSIONS_KEY = "interactive.sessions"
ITEM_TABLE = "ItemTable"


class StatementKey(str, Enum):
    INTERACTIVE_SESSIONS = "get_interactive_sessions"


_STATEMENTS = {
    StatementKey.INTERACTIVE_SESSIONS: f"SELECT value FROM {ITEM_TABLE} WHERE key = ?",
}


class SessionQueryEngine:
    """Fetch the raw session array and derive paged or filtered views of it."""

    def __init__(self, connection_manager: ConnectionManager):
        self.connection_manager = connection_manager
        # SQL text per statement; sqlite3 caches the compiled statement per
        # connection keyed by this text.
        self._prepared: dict[StatementKey, str] = {}

    async def get_sessions(
        self, options: Optional[QueryOptions] = None
    ) -> SessionQueryResult[SessionPage]:
        """Return raw sessions of the current workspace, paginated in memory."""
        options = options or QueryOptions()
        start = time.perf_counter()

        raw = await self._fetch_raw_sessions()
        if not raw.success:
            raw.execution_time = _elapsed_ms(start)
            return raw

        sessions = raw.data or []
        page = sessions
        if options.offset or options.limit:
            offset = options.offset or 0
            limit = options.limit or len(sessions)
            page = sessions[offset: offset + limit]

        return SessionQueryResult(
            success=True,
            data=SessionPage(
                sessions=page,
                pagination=Pagination(
                    offset=options.offset or 0,
                    limit=options.limit or len(page),
                    total=len(sessions),
                ),
                metadata=calculate_query_metadata(sessions) if options.include_metadata else None,
            ),
            execution_time=_elapsed_ms(start),
        )

    async def get_session_by_id(self, session_id: str) -> SessionQueryResult[dict]:
        start = time.perf_counter()
        result = await self.get_sessions()
        if not result.success:
            result.execution_time = _elapsed_ms(start)
            return result

        for session in result.data.sessions:
            if isinstance(session, dict) and session_id in (session.get("id"), session.get("sessionId")):
                return SessionQueryResult(
                    success=True, data=session, execution_time=_elapsed_ms(start)
                )

        return SessionQueryResult(
            success=False,
            error=f"Session with ID {session_id} not found",
            error_kind=ErrorKind.NOT_FOUND,
            execution_time=_elapsed_ms(start),
        )

    async def get_sessions_since(self, since: datetime) -> SessionQueryResult[SessionPage]:
        """Sessions whose ``createdAt`` is at or after ``since``."""
        start = time.perf_counter()
        result = await self.get_sessions()
        if not result.success:
            result.execution_time = _elapsed_ms(start)
            return result

        threshold = _as_utc(since)
        sessions = result.data.sessions
        matched = []
        for session in sessions:
            created = coerce_datetime(session.get("createdAt")) if isinstance(session, dict) else None
            if created is not None and created >= threshold:
                matched.append(session)

        return SessionQueryResult(
            success=True,
            data=SessionPage(
                sessions=matched,
                pagination=Pagination(offset=0, limit=len(matched), total=len(sessions)),
                metadata=calculate_query_metadata(matched),
            ),
            execution_time=_elapsed_ms(start),
        )

    async def get_session_metadata(self) -> SessionQueryResult[QueryMetadata]:
        start = time.perf_counter()
        result = await self.get_sessions(QueryOptions(include_metadata=True))
        if not result.success:
            result.execution_time = _elapsed_ms(start)
            return result
        return SessionQueryResult(
            success=True,
            data=result.data.metadata or QueryMetadata(),
            execution_time=_elapsed_ms(start),
        )

    def clear_statement_cache(self) -> None:
        self._prepared.clear()

    def get_stats(self) -> dict:
        return {
            "prepared_statements": len(self._prepared),
            "statements": [key.value for key in self._prepared],
        }

    def dispose(self) -> None:
        self.clear_statement_cache()

    # ── Private helpers ──────────────────────────────────────────────

    def _statement(self, key: StatementKey) -> str:
        sql = self._prepared.get(key)
        if sql is None:
            sql = _STATEMENTS[key]
            self._prepared[key] = sql
        return sql

    async def _fetch_raw_sessions(self) -> SessionQueryResult[list]:
        """Run the single ``interactive.sessions`` lookup."""
        info = await self.connection_manager.workspace_resolver.get_current_workspace_info()
        if not info.is_valid:
            return SessionQueryResult(
                success=False,
                error=info.error or "Failed to resolve current workspace",
                error_kind=ErrorKind.RESOLUTION,
            )

        sql = self._statement(StatementKey.INTERACTIVE_SESSIONS)
        # Borrow and use the handle under the path lock; closing takes the same lock.
        async with self.connection_manager.path_lock(info.database_path):
            conn_result = await self.connection_manager.get_connection(info.database_path)
            if not conn_result.success or conn_result.connection is None:
                return SessionQueryResult(
                    success=False,
                    error=conn_result.error or "Failed to establish database connection",
                    error_kind=ErrorKind.CONNECTION,
                )
            try:
                async with conn_result.connection.execute(sql, (INTERACTIVE_SESSIONS_KEY,)) as cursor:
                    row = await cursor.fetchone()
            except (aiosqlite.Error, ValueError) as e:
                logger.warning("Query against %s failed: %s", info.database_path, e)
                return SessionQueryResult(
                    success=False,
                    error=f"Database query failed: {e}",
                    error_kind=ErrorKind.QUERY,
                )

        if row is None or row[0] is None or row[0] in ("", b""):
            return SessionQueryResult(success=True, data=[])

        value = row[0]
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        if not isinstance(value, str):
            return SessionQueryResult(
                success=False,
                error=f"Interactive sessions data is stored as {type(value).__name__}, not text",
                error_kind=ErrorKind.INTEGRITY,
            )

        try:
            sessions = json.loads(value)
        except (ValueError, RecursionError) as e:
            return SessionQueryResult(
                success=False,
                error=f"Failed to parse session JSON data: {e}",
                error_kind=ErrorKind.INTEGRITY,
            )

        if not isinstance(sessions, list):
            return SessionQueryResult(
                success=False,
                error="Interactive sessions data is not in expected array format",
                error_kind=ErrorKind.INTEGRITY,
            )
        return SessionQueryResult(success=True, data=sessions)


def calculate_query_metadata(sessions: list[Any]) -> QueryMetadata:
    """Count, serialized size and creation range of raw sessions."""
    if not sessions:
        return QueryMetadata()

    total_size = 0
    dates = []
    for session in sessions:
        total_size += len(json.dumps(session, separators=(",", ":"), ensure_ascii=False))
        if isinstance(session, dict):
            created = coerce_datetime(session.get("createdAt"))
            if created is not None:
                dates.append(created)

    dates.sort()
    return QueryMetadata(
        total_sessions=len(sessions),
        total_size=total_size,
        latest_session=dates[-1] if dates else None,
        oldest_session=dates[0] if dates else None,
    )


def coerce_datetime(value: Any) -> Optional[datetime]:
    """Read an epoch-millisecond number or ISO string as an aware datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (ValueError, OSError, OverflowError):
            return None
    if isinstance(value, str) and value:
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            return _as_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
