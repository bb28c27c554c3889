"""Read-only connection pool for workspace state databases.

One ``aiosqlite.Connection`` is kept per database path. The manager is the only
owner of those handles: callers borrow them through ``get_connection`` and must
never close them.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import asdict
from typing import Optional
from urllib.parse import quote

import aiosqlite

from ..core import ConnectionConfig, ConnectionResult, DatabaseFileInfo
from .workspace import WorkspaceResolver, inspect_database_file

logger = logging.getLogger(__name__)

# Pragmas for a read-mostly handle. The journal mode belongs to the editor and
# is left alone.
_READ_PRAGMAS = (
    "PRAGMA synchronous = NORMAL",
    "PRAGMA cache_size = 1000",
    "PRAGMA temp_store = MEMORY",
)
# Path characters left unescaped in the connection URI.
_URI_SAFE = "/:\\"


class ConnectionManager:
    """Open, validate, pool and dispose read-only database handles."""

    # Seconds between attempts against a failing path. Breaker retries for the
    # same call land inside this window and fail fast.
    RETRY_DELAY = 30.0

    def __init__(
        self,
        workspace_resolver: WorkspaceResolver,
        config: Optional[ConnectionConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.workspace_resolver = workspace_resolver
        self.config = config or ConnectionConfig()
        self._clock = clock
        self._connections: dict[str, aiosqlite.Connection] = {}
        self._last_failed_attempt: dict[str, float] = {}
        self._open_locks: dict[str, asyncio.Lock] = {}
        self._use_locks: dict[str, asyncio.Lock] = {}

    # ── Public API ───────────────────────────────────────────────────

    async def get_current_workspace_connection(self) -> ConnectionResult:
        info = await self.workspace_resolver.get_current_workspace_info()
        if not info.is_valid:
            return ConnectionResult(
                success=False,
                error=info.error or "Failed to resolve current workspace",
            )
        return await self.get_connection(info.database_path)

    async def get_connection(self, database_path: str) -> ConnectionResult:
        """Return the pooled handle for ``database_path``, opening it if needed."""
        last_attempt = self._last_failed_attempt.get(database_path)
        if last_attempt is not None and self._clock() - last_attempt < self.RETRY_DELAY:
            return ConnectionResult(
                success=False,
                error=f"Too many recent connection attempts for {database_path}. Please wait.",
            )

        lock = self._open_locks.setdefault(database_path, asyncio.Lock())
        async with lock:
            existing = self._connections.get(database_path)
            if existing is not None:
                if await self._is_connection_valid(existing):
                    return ConnectionResult(success=True, connection=existing)
                logger.debug("Discarding stale connection for %s", database_path)
                await self._discard(database_path)

            if not inspect_database_file(database_path).is_accessible:
                self._last_failed_attempt[database_path] = self._clock()
                return ConnectionResult(
                    success=False,
                    error=f"Database file is not accessible: {database_path}",
                )

            try:
                conn = await aiosqlite.connect(
                    self._connection_uri(database_path),
                    uri=True,
                    timeout=self.config.timeout,
                )
            except (aiosqlite.Error, OSError) as e:
                self._last_failed_attempt[database_path] = self._clock()
                return ConnectionResult(
                    success=False,
                    error=f"Failed to establish database connection: {e}",
                )

            try:
                if self.config.read_only:
                    await conn.execute("PRAGMA query_only = ON")
                for pragma in _READ_PRAGMAS:
                    await conn.execute(pragma)
                async with conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = ? LIMIT 1", ("table",)
                ) as cursor:
                    await cursor.fetchone()
            except aiosqlite.Error as e:
                await self._close_quietly(conn, database_path)
                self._last_failed_attempt[database_path] = self._clock()
                return ConnectionResult(
                    success=False,
                    error=f"Database connection test failed: {e}",
                )

            self._connections[database_path] = conn
            self._last_failed_attempt.pop(database_path, None)
            logger.debug("Opened connection to %s", database_path)
            return ConnectionResult(success=True, connection=conn)

    def path_lock(self, database_path: str) -> asyncio.Lock:
        """Lock serialising statements against one pooled handle."""
        return self._use_locks.setdefault(database_path, asyncio.Lock())

    async def get_database_info(self, database_path: str) -> Optional[DatabaseFileInfo]:
        """Stat the file and read its ``user_version`` without pooling a handle."""
        info = inspect_database_file(database_path)
        if not info.is_accessible:
            return None

        try:
            async with aiosqlite.connect(
                self._connection_uri(database_path, read_only=True),
                uri=True,
                timeout=self.config.timeout,
            ) as conn:
                async with conn.execute("PRAGMA user_version") as cursor:
                    row = await cursor.fetchone()
            info.version = str(row[0]) if row else "unknown"
        except (aiosqlite.Error, OSError) as e:
            logger.debug("Version detection failed for %s: %s", database_path, e)
            info.version = "unknown"
        return info

    async def close_connection(self, database_path: str) -> None:
        """Close the pooled handle once no statement is running on it."""
        async with self.path_lock(database_path):
            await self._discard(database_path)

    async def close_all_connections(self) -> None:
        for path in list(self._connections):
            await self.close_connection(path)

    def get_connection_stats(self) -> dict:
        return {
            "active_connections": len(self._connections),
            "connection_paths": list(self._connections),
            "config": asdict(self.config),
            "retry_attempts": len(self._last_failed_attempt),
        }

    async def dispose(self) -> None:
        await self.close_all_connections()
        self._last_failed_attempt.clear()
        self._open_locks.clear()
        self._use_locks.clear()

    # ── Private helpers ──────────────────────────────────────────────

    def _connection_uri(self, database_path: str, read_only: Optional[bool] = None) -> str:
        read_only = self.config.read_only if read_only is None else read_only
        if read_only:
            mode = "ro"
        elif self.config.must_exist:
            mode = "rw"
        else:
            mode = "rwc"
        return f"file:{quote(database_path, safe=_URI_SAFE)}?mode={mode}"

    async def _is_connection_valid(self, conn: aiosqlite.Connection) -> bool:
        try:
            async with conn.execute("SELECT 1") as cursor:
                await cursor.fetchone()
            return True
        except (aiosqlite.Error, ValueError):
            return False

    async def _discard(self, database_path: str) -> None:
        conn = self._connections.pop(database_path, None)
        if conn is not None:
            await self._close_quietly(conn, database_path)

    async def _close_quietly(self, conn: aiosqlite.Connection, database_path: str) -> None:
        try:
            await conn.close()
        except Exception as e:
            logger.warning("Error closing database connection for %s: %s", database_path, e)
