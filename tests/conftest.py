"""Shared test fixtures for vscode-chat-history."""

import json
import sqlite3
from datetime import datetime, timezone

import pytest

from vscode_chat_history.config import STORAGE_PATH_ENV
from vscode_chat_history.core import BreakerConfig
from vscode_chat_history.database import DatabaseReader, WorkspaceResolver
from vscode_chat_history.provider import StaticWorkspaceProvider

CREATED_MS = int(datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc).timestamp() * 1000)
LATER_MS = int(datetime(2025, 3, 2, 9, 30, 0, tzinfo=timezone.utc).timestamp() * 1000)

SAMPLE_SESSIONS = [
    {
        "id": "session-001",
        "customTitle": "Fix auth bug",
        "createdAt": CREATED_MS,
        "lastModified": CREATED_MS + 60_000,
        "messages": [
            {"role": "user", "content": "Fix the login bug in auth.ts", "timestamp": CREATED_MS},
            {"role": "assistant", "content": "Updated the token validation.", "timestamp": CREATED_MS + 5000},
        ],
    },
    {
        "sessionId": "session-002",
        "title": "Add dark mode",
        "createdAt": "2025-03-02T09:30:00.000Z",
        "messages": [
            {"role": "user", "content": "Add dark mode support", "timestamp": LATER_MS},
            {"role": "assistant", "content": "Implemented a CSS variable toggle.", "timestamp": LATER_MS + 1000},
            {"role": "user", "content": "Thanks!", "timestamp": LATER_MS + 2000},
        ],
    },
]


def make_state_db(db_path, sessions=None, raw_value=None):
    """Create a state.vscdb with an ItemTable, optionally holding sessions."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.execute("INSERT INTO ItemTable VALUES (?, ?)", ("workbench.panel.chat", "{}"))
    value = raw_value if raw_value is not None else (json.dumps(sessions) if sessions is not None else None)
    if value is not None:
        conn.execute("INSERT INTO ItemTable VALUES (?, ?)", ("interactive.sessions", value))
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def storage_root(tmp_path, monkeypatch):
    """An empty workspaceStorage directory wired in through the env override."""
    root = tmp_path / "workspaceStorage"
    root.mkdir()
    monkeypatch.setenv(STORAGE_PATH_ENV, str(root))
    return root


@pytest.fixture
def project_dir(tmp_path):
    project = tmp_path / "dev" / "my-project"
    project.mkdir(parents=True)
    return project


@pytest.fixture
def workspace_db(storage_root, project_dir):
    """State database for ``project_dir`` holding SAMPLE_SESSIONS."""
    workspace_id = WorkspaceResolver.generate_workspace_id(str(project_dir))
    return make_state_db(storage_root / workspace_id / "state.vscdb", SAMPLE_SESSIONS)


@pytest.fixture
def fast_breaker_config():
    return BreakerConfig(max_retries=0, retry_delay=0.001)


@pytest.fixture
async def reader(project_dir, fast_breaker_config):
    reader = DatabaseReader(
        StaticWorkspaceProvider(str(project_dir)),
        breaker_config=fast_breaker_config,
    )
    yield reader
    await reader.dispose()


@pytest.fixture
def state_db():
    """Factory building state databases: ``state_db(path, sessions)``."""
    return make_state_db
