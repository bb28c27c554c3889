"""Tests for the read-only connection pool."""

import asyncio
import sqlite3

import aiosqlite
import pytest

from vscode_chat_history.database import ConnectionManager, WorkspaceResolver
from vscode_chat_history.provider import StaticWorkspaceProvider


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def manager(project_dir, clock):
    resolver = WorkspaceResolver(workspace_provider=StaticWorkspaceProvider(str(project_dir)))
    manager = ConnectionManager(resolver, clock=clock)
    yield manager
    await manager.dispose()


@pytest.mark.asyncio
async def test_current_workspace_connection(manager, workspace_db):
    result = await manager.get_current_workspace_connection()
    assert result.success
    assert result.connection is not None
    assert str(workspace_db) in manager.get_connection_stats()["connection_paths"]


@pytest.mark.asyncio
async def test_current_workspace_unresolved(storage_root, clock):
    resolver = WorkspaceResolver(workspace_provider=StaticWorkspaceProvider(None))
    manager = ConnectionManager(resolver, clock=clock)
    result = await manager.get_current_workspace_connection()
    assert not result.success
    assert "No workspace folder" in result.error


@pytest.mark.asyncio
async def test_connection_is_pooled(manager, workspace_db):
    path = str(workspace_db)
    first = await manager.get_connection(path)
    second = await manager.get_connection(path)
    assert first.connection is second.connection
    assert manager.get_connection_stats()["active_connections"] == 1


@pytest.mark.asyncio
async def test_concurrent_opens_share_one_handle(manager, workspace_db):
    path = str(workspace_db)
    results = await asyncio.gather(*(manager.get_connection(path) for _ in range(5)))
    assert all(r.success for r in results)
    assert len({id(r.connection) for r in results}) == 1
    assert manager.get_connection_stats()["connection_paths"] == [path]


@pytest.mark.asyncio
async def test_connection_rejects_writes(manager, workspace_db):
    result = await manager.get_connection(str(workspace_db))
    with pytest.raises(aiosqlite.Error):
        await result.connection.execute("DELETE FROM ItemTable")


@pytest.mark.asyncio
async def test_pooled_handle_can_read(manager, workspace_db):
    result = await manager.get_connection(str(workspace_db))
    async with result.connection.execute("SELECT COUNT(*) FROM ItemTable") as cursor:
        row = await cursor.fetchone()
    assert row[0] == 2


@pytest.mark.asyncio
async def test_bad_signature_fails_without_pooling(manager, tmp_path):
    bogus = tmp_path / "state.vscdb"
    bogus.write_bytes(b"NotASQLiteFile!" + b"\x00" * 100)

    result = await manager.get_connection(str(bogus))
    assert not result.success
    assert "not accessible" in result.error
    assert str(bogus) not in manager.get_connection_stats()["connection_paths"]
    assert manager.get_connection_stats()["retry_attempts"] == 1


@pytest.mark.asyncio
async def test_failed_path_cools_down(manager, clock, tmp_path, state_db):
    path = tmp_path / "ws" / "state.vscdb"
    path.parent.mkdir()
    path.write_bytes(b"garbage")

    assert not (await manager.get_connection(str(path))).success

    # The file becomes valid, but the path is still cooling down.
    path.unlink()
    state_db(path, [])
    clock.now += 10
    result = await manager.get_connection(str(path))
    assert not result.success
    assert "Too many recent connection attempts" in result.error

    clock.now += ConnectionManager.RETRY_DELAY
    result = await manager.get_connection(str(path))
    assert result.success
    assert manager.get_connection_stats()["retry_attempts"] == 0


@pytest.mark.asyncio
async def test_stale_handle_is_replaced(manager, workspace_db):
    path = str(workspace_db)
    first = await manager.get_connection(path)
    await first.connection.close()

    second = await manager.get_connection(path)
    assert second.success
    assert second.connection is not first.connection
    assert manager.get_connection_stats()["active_connections"] == 1


@pytest.mark.asyncio
async def test_close_connection_is_idempotent(manager, workspace_db):
    path = str(workspace_db)
    await manager.get_connection(path)
    await manager.close_connection(path)
    await manager.close_connection(path)
    assert path not in manager.get_connection_stats()["connection_paths"]


@pytest.mark.asyncio
async def test_close_waits_for_statement_in_progress(manager, workspace_db):
    path = str(workspace_db)
    await manager.get_connection(path)

    async with manager.path_lock(path):
        closing = asyncio.create_task(manager.close_connection(path))
        await asyncio.sleep(0.01)
        assert not closing.done()
        assert manager.get_connection_stats()["connection_paths"] == [path]

    await closing
    assert manager.get_connection_stats()["connection_paths"] == []


@pytest.mark.asyncio
async def test_close_all_connections(manager, workspace_db, tmp_path, state_db):
    other = state_db(tmp_path / "other" / "state.vscdb", [])
    await manager.get_connection(str(workspace_db))
    await manager.get_connection(str(other))
    assert manager.get_connection_stats()["active_connections"] == 2

    await manager.close_all_connections()
    assert manager.get_connection_stats()["active_connections"] == 0


@pytest.mark.asyncio
async def test_get_database_info_reads_user_version(manager, workspace_db):
    conn = sqlite3.connect(str(workspace_db))
    conn.execute("PRAGMA user_version = 7")
    conn.close()

    info = await manager.get_database_info(str(workspace_db))
    assert info is not None
    assert info.is_accessible
    assert info.version == "7"
    assert str(workspace_db) not in manager.get_connection_stats()["connection_paths"]


@pytest.mark.asyncio
async def test_get_database_info_missing_file(manager, tmp_path):
    assert await manager.get_database_info(str(tmp_path / "missing.vscdb")) is None


@pytest.mark.asyncio
async def test_dispose_clears_everything(manager, workspace_db, tmp_path):
    await manager.get_connection(str(workspace_db))
    await manager.get_connection(str(tmp_path / "missing.vscdb"))
    await manager.dispose()

    stats = manager.get_connection_stats()
    assert stats["active_connections"] == 0
    assert stats["retry_attempts"] == 0


def test_stats_include_config(tmp_path):
    manager = ConnectionManager(WorkspaceResolver())
    stats = manager.get_connection_stats()
    assert stats["config"] == {"read_only": True, "timeout": 5.0, "must_exist": True}
    assert stats["connection_paths"] == []
