"""Platform-aware path resolution for VS Code's workspace storage."""

import logging
import os
import platform as _platform
import sys
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Optional

from .core import PathValidationResult, PlatformConfig
from .errors import PlatformError

logger = logging.getLogger(__name__)

STORAGE_PATH_ENV = "VSCHAT_STORAGE_PATH"
WORKSPACE_ENV = "VSCHAT_WORKSPACE"

WORKSPACE_STORAGE_FOLDER = "workspaceStorage"
# Primary installation first, then the variants tried as fallbacks.
CODE_FOLDERS = ["Code", "Code - Insiders", "VSCodium"]


def _darwin_base(home: Path, environ: Mapping[str, str], install: str) -> Path:
    return home / "Library" / "Application Support" / install / "User"


def _win32_base(home: Path, environ: Mapping[str, str], install: str) -> Path:
    app_data = environ.get("APPDATA")
    if not app_data:
        raise PlatformError("APPDATA environment variable not found on Windows")
    return Path(app_data) / install / "User"


def _linux_base(home: Path, environ: Mapping[str, str], install: str) -> Path:
    return home / ".config" / install / "User"


BASE_PATH_BUILDERS: dict[str, Callable[[Path, Mapping[str, str], str], Path]] = {
    "darwin": _darwin_base,
    "win32": _win32_base,
    "linux": _linux_base,
}


def validate_storage_path(storage_path: Path) -> PathValidationResult:
    """Check that a storage directory exists, is a directory and is readable."""
    try:
        if not storage_path.exists():
            return PathValidationResult(
                is_valid=False,
                error=f"VS Code workspace storage directory not found: {storage_path}",
            )
        if not storage_path.is_dir():
            return PathValidationResult(
                is_valid=False,
                error=f"Path exists but is not a directory: {storage_path}",
            )
        if not os.access(storage_path, os.R_OK):
            return PathValidationResult(
                is_valid=False,
                error=f"No read access to VS Code storage directory: {storage_path}",
            )
    except OSError as e:
        return PathValidationResult(
            is_valid=False, error=f"Failed to validate storage path: {e}"
        )
    return PathValidationResult(is_valid=True, path=str(storage_path))


def substitute_install_folder(base_path: Path, install: str) -> Path:
    """Swap the primary installation folder segment of ``base_path`` for ``install``."""
    parts = list(base_path.parts)
    for i in range(len(parts) - 1, -1, -1):
        if parts[i] == CODE_FOLDERS[0]:
            parts[i] = install
            return Path(*parts)
    return base_path


class PlatformPathResolver:
    """Locate the host editor's ``workspaceStorage`` directory.

    The platform, home directory and environment default to the running
    process and can be overridden for tests or for inspecting another
    machine's layout.
    """

    def __init__(
        self,
        platform: Optional[str] = None,
        home: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._platform = platform or sys.platform
        self._home = home
        self._environ = environ if environ is not None else os.environ
        self._config: Optional[PlatformConfig] = None

    def get_platform_config(self) -> PlatformConfig:
        """Return the cached platform config, computing it on first use.

        Raises:
            PlatformError: Unsupported platform or missing ``APPDATA`` on Windows.
        """
        if self._config is not None:
            return self._config

        builder = BASE_PATH_BUILDERS.get(self._platform)
        if builder is None:
            raise PlatformError(
                f"Unsupported platform: {self._platform}. "
                f"Supported platforms: {', '.join(BASE_PATH_BUILDERS)}"
            )

        home = self._home or Path.home()
        base_path = builder(home, self._environ, CODE_FOLDERS[0])
        self._config = PlatformConfig(
            platform=self._platform,
            base_path=str(base_path),
            workspace_storage_path=str(base_path / WORKSPACE_STORAGE_FOLDER),
            separator=os.sep,
        )
        return self._config

    async def get_storage_path(self) -> PathValidationResult:
        """Return the first valid ``workspaceStorage`` directory for this machine."""
        override = self._environ.get(STORAGE_PATH_ENV)
        if override:
            return validate_storage_path(Path(override))

        try:
            config = self.get_platform_config()
        except PlatformError as e:
            return PathValidationResult(
                is_valid=False, error=f"Failed to resolve VS Code storage path: {e}"
            )

        primary = Path(config.workspace_storage_path)
        validation = validate_storage_path(primary)
        if validation.is_valid:
            return validation

        base_path = Path(config.base_path)
        for install in CODE_FOLDERS[1:]:
            candidate = substitute_install_folder(base_path, install) / WORKSPACE_STORAGE_FOLDER
            if validate_storage_path(candidate).is_valid:
                logger.debug("Using alternate installation storage at %s", candidate)
                return PathValidationResult(is_valid=True, path=str(candidate))

        return PathValidationResult(
            is_valid=False,
            error=f"No valid VS Code installation found. Tried: {', '.join(CODE_FOLDERS)}",
        )

    def get_platform_details(self) -> dict:
        """Return platform information for diagnostics."""
        details = {
            "platform": self._platform,
            "architecture": _platform.machine(),
            "home_directory": str(self._home or Path.home()),
            "supported_platforms": list(BASE_PATH_BUILDERS),
            "python_version": _platform.python_version(),
            "storage_override": self._environ.get(STORAGE_PATH_ENV),
        }
        try:
            config = self.get_platform_config()
            details["base_path"] = config.base_path
            details["workspace_storage_path"] = config.workspace_storage_path
        except PlatformError as e:
            details["error"] = str(e)
        return details

    def reset_cache(self) -> None:
        self._config = None
