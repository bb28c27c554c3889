"""FastAPI web server for vscode-chat-history."""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime

from fastapi import FastAPI, HTTPException, Query

from .core import ReaderResult
from .database import DatabaseReader
from .errors import ErrorKind
from .export import result_to_dict, session_to_dict
from .provider import EnvWorkspaceProvider

logger = logging.getLogger(__name__)

# Reader cache (populated on first request)
_reader: DatabaseReader | None = None

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RESOLUTION: 404,
    ErrorKind.CIRCUIT_OPEN: 503,
}


def _get_reader() -> DatabaseReader:
    """Lazily initialize and cache the reader."""
    global _reader
    if _reader is None:
        _reader = DatabaseReader(EnvWorkspaceProvider())
        logger.info("Database reader initialized")
    return _reader


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    global _reader
    if _reader is not None:
        await _reader.dispose()
        _reader = None


app = FastAPI(title="vscode-chat-history", version="0.1.0", lifespan=lifespan)


def _raise_for_failure(result: ReaderResult) -> None:
    if result.success:
        return
    status = _STATUS_BY_KIND.get(result.error_kind, 500)
    logger.error("Reader failure (%s): %s", result.error_kind, result.error)
    raise HTTPException(status_code=status, detail=result.error or "Failed to read sessions")


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/sessions")
async def get_sessions(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Return sessions of the current workspace, without message bodies."""
    result = await _get_reader().get_sessions()
    _raise_for_failure(result)

    data = result_to_dict(result, include_messages=False)
    data["total"] = len(result.sessions)
    data["sessions"] = data["sessions"][offset: offset + limit]
    return data


@app.get("/api/sessions/since")
async def get_sessions_since(
    since: datetime = Query(..., description="ISO 8601 date or datetime"),
):
    """Return sessions created at or after ``since``."""
    result = await _get_reader().get_sessions_since(since)
    _raise_for_failure(result)
    return result_to_dict(result, include_messages=False)


@app.get("/api/session/{session_id:path}")
async def get_session(session_id: str):
    """Return one session with its messages."""
    result = await _get_reader().get_session_by_id(session_id)
    _raise_for_failure(result)
    if not result.sessions:
        raise HTTPException(status_code=404, detail="Session not found")
    return session_to_dict(result.sessions[0])


@app.get("/api/workspaces")
async def get_workspaces():
    """Return every workspace with a readable state database."""
    discovery = await _get_reader().workspace_resolver.discover_workspace_databases()
    return {
        "found": discovery.found,
        "error": discovery.error,
        "databases": [
            {**asdict(db), "last_modified": db.last_modified.isoformat()}
            for db in discovery.databases
        ],
    }


@app.get("/api/health")
async def get_health():
    return _get_reader().get_system_health()


@app.get("/api/selftest")
async def get_selftest():
    report = await _get_reader().test_connection()
    return asdict(report)
