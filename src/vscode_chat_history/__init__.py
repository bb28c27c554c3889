"""Read chat sessions from VS Code's per-workspace state databases."""

__version__ = "0.1.0"
