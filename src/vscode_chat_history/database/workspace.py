"""Map workspace folders to VS Code's hashed ids and state databases.

VS Code keeps per-workspace state under
``workspaceStorage/<workspace id>/state.vscdb`` where the id is an MD5 digest
of the workspace folder path. All file checks here are read-only.
"""

import hashlib
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..config import PlatformPathResolver
from ..core import DatabaseDiscoveryResult, DatabaseFileInfo, WorkspaceDatabase, WorkspaceInfo
from ..provider import WorkspaceProvider

logger = logging.getLogger(__name__)

DATABASE_FILENAME = "state.vscdb"
SQLITE_SIGNATURE = b"SQLite format 3"
WORKSPACE_ID_LENGTH = 32

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def inspect_database_file(database_path: str) -> DatabaseFileInfo:
    """Stat a database file and check its SQLite signature.

    ``is_accessible`` is True only for an existing, readable regular file whose
    first 15 bytes are ``SQLite format 3``.
    """
    path = Path(database_path)
    try:
        if not path.exists() or not path.is_file():
            return DatabaseFileInfo(database_path, 0, _EPOCH, False)

        stat = path.stat()
        modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        if not os.access(path, os.R_OK):
            return DatabaseFileInfo(database_path, stat.st_size, modified, False)

        with path.open("rb") as fh:
            header = fh.read(16)
        return DatabaseFileInfo(
            database_path,
            stat.st_size,
            modified,
            header[: len(SQLITE_SIGNATURE)] == SQLITE_SIGNATURE,
        )
    except OSError as e:
        logger.debug("Cannot inspect %s: %s", database_path, e)
        return DatabaseFileInfo(database_path, 0, _EPOCH, False)


def normalize_workspace_path(workspace_path: str) -> str:
    """Absolute path with redundant and trailing separators removed."""
    return os.path.abspath(os.path.expanduser(workspace_path))


class WorkspaceResolver:
    """Resolve workspace folders to their ``state.vscdb`` files."""

    def __init__(
        self,
        platform_resolver: Optional[PlatformPathResolver] = None,
        workspace_provider: Optional[WorkspaceProvider] = None,
    ):
        self.platform_resolver = platform_resolver or PlatformPathResolver()
        self.workspace_provider = workspace_provider
        self._cache: dict[str, WorkspaceInfo] = {}

    @staticmethod
    def generate_workspace_id(workspace_path: str) -> str:
        """Return the 32-char hex id VS Code uses for ``workspace_path``.

        The path is made absolute and lower-cased first, so paths differing
        only in case or by a trailing separator share one id.
        """
        canonical = normalize_workspace_path(workspace_path).lower()
        return hashlib.md5(canonical.encode("utf-8")).hexdigest()[:WORKSPACE_ID_LENGTH]

    async def get_current_workspace_info(self) -> WorkspaceInfo:
        """Resolve the workspace reported by the injected provider."""
        root = self.workspace_provider.get_workspace_root() if self.workspace_provider else None
        if not root:
            return WorkspaceInfo(
                workspace_path="",
                workspace_id="",
                database_path="",
                is_valid=False,
                error="No workspace folder is currently open",
            )
        return await self.get_workspace_info(root)

    async def get_workspace_info(self, workspace_path: str) -> WorkspaceInfo:
        cached = self._cache.get(workspace_path)
        if cached is not None:
            if cached.database_path and Path(cached.database_path).exists():
                logger.debug("Workspace cache hit for %s", workspace_path)
                return cached
            del self._cache[workspace_path]

        normalized = normalize_workspace_path(workspace_path)
        workspace_id = self.generate_workspace_id(normalized)

        storage = await self.platform_resolver.get_storage_path()
        if not storage.is_valid or not storage.path:
            return WorkspaceInfo(
                workspace_path=normalized,
                workspace_id=workspace_id,
                database_path="",
                is_valid=False,
                error=storage.error or "Failed to get VS Code storage path",
            )

        database_path = str(Path(storage.path) / workspace_id / DATABASE_FILENAME)
        is_valid = inspect_database_file(database_path).is_accessible

        info = WorkspaceInfo(
            workspace_path=normalized,
            workspace_id=workspace_id,
            database_path=database_path,
            is_valid=is_valid,
            error=None if is_valid else f"Database file not found or not accessible: {database_path}",
        )
        self._cache[workspace_path] = info
        return info

    async def discover_workspace_databases(self) -> DatabaseDiscoveryResult:
        """List every workspace with a valid state database, newest first."""
        storage = await self.platform_resolver.get_storage_path()
        if not storage.is_valid or not storage.path:
            return DatabaseDiscoveryResult(
                found=False,
                error=storage.error or "Failed to get VS Code storage path",
            )

        databases = []
        try:
            entries = list(Path(storage.path).iterdir())
        except OSError as e:
            return DatabaseDiscoveryResult(
                found=False, error=f"Failed to discover workspace databases: {e}"
            )

        for ws_dir in entries:
            if not ws_dir.is_dir():
                continue
            file_info = inspect_database_file(str(ws_dir / DATABASE_FILENAME))
            if not file_info.is_accessible:
                continue
            databases.append(WorkspaceDatabase(
                workspace_id=ws_dir.name,
                database_path=file_info.path,
                last_modified=file_info.last_modified,
                size=file_info.size,
                is_accessible=True,
            ))

        databases.sort(key=lambda d: d.last_modified, reverse=True)
        return DatabaseDiscoveryResult(
            found=bool(databases),
            databases=databases,
            error=None if databases else "No accessible workspace databases found",
        )

    async def find_workspace_by_id(self, workspace_id: str) -> Optional[WorkspaceInfo]:
        """Reverse lookup; the workspace folder itself is unknown."""
        storage = await self.platform_resolver.get_storage_path()
        if not storage.is_valid or not storage.path:
            return None

        database_path = str(Path(storage.path) / workspace_id / DATABASE_FILENAME)
        if not inspect_database_file(database_path).is_accessible:
            return None
        return WorkspaceInfo(
            workspace_path="",
            workspace_id=workspace_id,
            database_path=database_path,
            is_valid=True,
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_cache_stats(self) -> dict:
        return {
            "cache_size": len(self._cache),
            "cached_workspaces": list(self._cache),
        }
