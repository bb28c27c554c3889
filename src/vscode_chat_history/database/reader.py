"""Facade over the database access pipeline.

Composes platform and workspace resolution, the connection pool, the query
engine and the parser, with the circuit breaker around the top-level reads.
Connection and query failures are raised inside the breaker so it can retry and
count them; resolution, integrity and parsing failures are returned as values
and never touch the breaker.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from datetime import datetime
from typing import Optional

from ..config import PlatformPathResolver
from ..core import (
    BreakerConfig,
    ConnectionConfig,
    QueryOptions,
    ReaderConfig,
    ReaderMetadata,
    ReaderResult,
    SelfTestReport,
    SessionQueryResult,
    ValidationOptions,
)
from ..errors import DatabaseAccessError, ErrorKind
from ..provider import WorkspaceProvider
from .breaker import CircuitBreaker
from .connection import ConnectionManager
from .parser import SessionDataParser
from .query import SessionQueryEngine
from .workspace import WorkspaceResolver

logger = logging.getLogger(__name__)

# Known-good sample used by the self-test to exercise the parser.
_SELF_TEST_SAMPLE = [
    {
        "id": "self-test",
        "messages": [
            {"role": "user", "content": "ping"},
            {"role": "assistant", "content": "pong"},
        ],
    }
]


class DatabaseReader:
    """Read chat sessions of the current workspace."""

    def __init__(
        self,
        workspace_provider: WorkspaceProvider,
        config: Optional[ReaderConfig] = None,
        *,
        platform_resolver: Optional[PlatformPathResolver] = None,
        connection_config: Optional[ConnectionConfig] = None,
        breaker: Optional[CircuitBreaker] = None,
        breaker_config: Optional[BreakerConfig] = None,
    ):
        self.config = config or ReaderConfig()
        self.platform_resolver = platform_resolver or PlatformPathResolver()
        self.workspace_resolver = WorkspaceResolver(self.platform_resolver, workspace_provider)
        self.connection_manager = ConnectionManager(self.workspace_resolver, connection_config)
        self.query_engine = SessionQueryEngine(self.connection_manager)
        self.parser = SessionDataParser(ValidationOptions(
            strict_mode=self.config.strict_parsing,
            allow_empty_sessions=False,
            validate_timestamps=True,
            require_session_id=False,
        ))
        self.breaker = breaker or CircuitBreaker(breaker_config)

    async def get_sessions(self) -> ReaderResult:
        return await self._run("get_sessions", self._get_sessions)

    async def get_session_by_id(self, session_id: str) -> ReaderResult:
        return await self._run("get_session_by_id", lambda: self._get_session_by_id(session_id))

    async def get_sessions_since(self, since: datetime) -> ReaderResult:
        return await self._run("get_sessions_since", lambda: self._get_sessions_since(since))

    def get_system_health(self) -> dict:
        return {
            "circuit_breaker": self.breaker.get_health(),
            "connections": self.connection_manager.get_connection_stats(),
            "query_engine": self.query_engine.get_stats(),
            "platform": self.platform_resolver.get_platform_details(),
            "workspace": self.workspace_resolver.get_cache_stats(),
            "parser": asdict(self.parser.get_validation_options()),
            "config": asdict(self.config),
        }

    async def test_connection(self) -> SelfTestReport:
        """Exercise each layer in order, stopping at the first that fails."""
        report = SelfTestReport()

        storage = await self.platform_resolver.get_storage_path()
        report.platform_resolution = storage.is_valid
        if not storage.is_valid:
            report.errors.append(f"Platform resolution: {storage.error}")
            return report

        workspace = await self.workspace_resolver.get_current_workspace_info()
        report.workspace_resolution = workspace.is_valid
        if not workspace.is_valid:
            report.errors.append(f"Workspace resolution: {workspace.error}")
            return report

        connection = await self.connection_manager.get_connection(workspace.database_path)
        report.database_connection = connection.success
        if not connection.success:
            report.errors.append(f"Database connection: {connection.error}")
            return report

        query = await self.query_engine.get_session_metadata()
        report.session_query = query.success
        if not query.success:
            report.errors.append(f"Session query: {query.error}")
            return report

        parsed = self.parser.parse_session_data(_SELF_TEST_SAMPLE)
        report.data_parsing = parsed.success
        if not parsed.success:
            report.errors.append(f"Data parsing: {parsed.error}")
            return report

        report.overall = True
        return report

    async def dispose(self) -> None:
        await self.connection_manager.dispose()
        self.query_engine.dispose()
        self.workspace_resolver.clear_cache()
        self.platform_resolver.reset_cache()

    # ── Private helpers ──────────────────────────────────────────────

    async def _run(
        self, operation_name: str, operation: Callable[[], Awaitable[ReaderResult]]
    ) -> ReaderResult:
        start = time.perf_counter()
        try:
            if not self.config.enable_circuit_breaker:
                try:
                    result = await operation()
                except DatabaseAccessError as e:
                    result = ReaderResult(success=False, error=str(e), error_kind=e.kind)
                result.metadata.processing_time = _elapsed_ms(start)
                return result

            outcome = await self.breaker.execute(operation, operation_name)
            if outcome.success and outcome.data is not None:
                result = outcome.data
            else:
                result = ReaderResult(
                    success=False,
                    error=outcome.error,
                    error_kind=ErrorKind.CIRCUIT_OPEN if outcome.rejected else ErrorKind.CONNECTION,
                )
            result.metadata.breaker_state = outcome.state
            result.metadata.processing_time = _elapsed_ms(start)
            return result
        finally:
            if not self.config.cache_connections:
                await self.connection_manager.close_all_connections()

    async def _get_sessions(self) -> ReaderResult:
        query = await self.query_engine.get_sessions(QueryOptions(include_metadata=True))
        if not query.success:
            return _query_failure(query)
        return self._parse(query.data.sessions)

    async def _get_session_by_id(self, session_id: str) -> ReaderResult:
        query = await self.query_engine.get_session_by_id(session_id)
        if not query.success:
            return _query_failure(query)
        return self._parse([query.data])

    async def _get_sessions_since(self, since: datetime) -> ReaderResult:
        query = await self.query_engine.get_sessions_since(since)
        if not query.success:
            return _query_failure(query)
        return self._parse(query.data.sessions)

    def _parse(self, raw_sessions: list) -> ReaderResult:
        # An empty store is a valid, empty answer rather than a parse failure.
        if not raw_sessions:
            return ReaderResult(success=True)

        parsed = self.parser.parse_session_data(raw_sessions)
        for warning in parsed.warnings:
            logger.debug("Parser warning: %s", warning)
        if not parsed.success:
            return ReaderResult(
                success=False,
                error=parsed.error or "Failed to parse sessions",
                error_kind=ErrorKind.PARSE,
            )
        return ReaderResult(
            success=True,
            sessions=parsed.data,
            metadata=ReaderMetadata(total_sessions=len(parsed.data)),
        )


def _query_failure(query: SessionQueryResult) -> ReaderResult:
    """Raise retryable failures for the breaker, return the rest as values."""
    kind = query.error_kind or ErrorKind.QUERY
    error = query.error or "Failed to query sessions"
    if kind.retryable:
        raise DatabaseAccessError(error, kind)
    return ReaderResult(success=False, error=error, error_kind=kind)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
