"""Host capability: which workspace folder is currently open."""

import os
from abc import ABC, abstractmethod
from typing import Optional

from .config import WORKSPACE_ENV


class WorkspaceProvider(ABC):
    """Supplies the current workspace root to the database pipeline.

    The surrounding application (an editor extension, the CLI, the web
    server) implements this; the pipeline never asks the host directly.
    """

    @abstractmethod
    def get_workspace_root(self) -> Optional[str]:
        """Return the absolute path of the open workspace, or None."""
        ...


class StaticWorkspaceProvider(WorkspaceProvider):
    """A fixed workspace root, e.g. from a command-line option."""

    def __init__(self, workspace_root: Optional[str]):
        self.workspace_root = workspace_root

    def get_workspace_root(self) -> Optional[str]:
        return self.workspace_root or None


class EnvWorkspaceProvider(WorkspaceProvider):
    """Reads the workspace root from ``VSCHAT_WORKSPACE`` on every call."""

    def get_workspace_root(self) -> Optional[str]:
        return os.environ.get(WORKSPACE_ENV) or None
