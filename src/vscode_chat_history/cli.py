"""CLI entry point for vscode-chat-history."""

import asyncio
import logging
import os
from dataclasses import asdict
from datetime import datetime

import click
import uvicorn

from .config import WORKSPACE_ENV
from .database import DatabaseReader
from .export import result_to_dict, session_to_json, to_json
from .provider import StaticWorkspaceProvider

workspace_option = click.option(
    "--workspace",
    type=click.Path(file_okay=False),
    default=os.getcwd,
    show_default="current directory",
    help="Workspace folder whose chat sessions to read.",
)


async def _with_reader(workspace: str, action):
    reader = DatabaseReader(StaticWorkspaceProvider(workspace))
    try:
        return await action(reader)
    finally:
        await reader.dispose()


def _run(workspace: str, action):
    return asyncio.run(_with_reader(workspace, action))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """Read chat sessions from VS Code's workspace state databases."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@workspace_option
@click.option("--limit", type=click.IntRange(min=1), default=None, help="Maximum sessions to list.")
@click.option("--offset", type=click.IntRange(min=0), default=0, help="Sessions to skip.")
def sessions(workspace: str, limit: int | None, offset: int):
    """List the chat sessions of a workspace."""
    result = _run(workspace, lambda reader: reader.get_sessions())
    data = result_to_dict(result, include_messages=False)
    end = None if limit is None else offset + limit
    data["sessions"] = data["sessions"][offset:end]
    click.echo(to_json(data))
    if not result.success:
        raise SystemExit(1)


@main.command()
@click.argument("session_id")
@workspace_option
def show(session_id: str, workspace: str):
    """Print one session with its messages."""
    result = _run(workspace, lambda reader: reader.get_session_by_id(session_id))
    if not result.success or not result.sessions:
        raise click.ClickException(result.error or "Session not found")
    click.echo(session_to_json(result.sessions[0]))


@main.command()
@click.argument("date", type=click.DateTime())
@workspace_option
def since(date: datetime, workspace: str):
    """List sessions created on or after DATE."""
    result = _run(workspace, lambda reader: reader.get_sessions_since(date))
    click.echo(to_json(result_to_dict(result, include_messages=False)))
    if not result.success:
        raise SystemExit(1)


@main.command()
def workspaces():
    """List every workspace with a readable state database, newest first."""
    discovery = _run("", lambda reader: reader.workspace_resolver.discover_workspace_databases())
    if not discovery.found:
        raise click.ClickException(discovery.error or "No workspace databases found")
    for db in discovery.databases:
        click.echo(f"{db.workspace_id}  {db.last_modified:%Y-%m-%d %H:%M}  {db.size:>10}  {db.database_path}")


@main.command()
@workspace_option
def health(workspace: str):
    """Print pipeline health and diagnostics."""
    click.echo(to_json(_run(workspace, _health)))


async def _health(reader: DatabaseReader) -> dict:
    # Resolve once so the workspace and connection sections are populated.
    await reader.get_sessions()
    return reader.get_system_health()


@main.command()
@workspace_option
def selftest(workspace: str):
    """Check every layer of the pipeline in order."""
    report = _run(workspace, lambda reader: reader.test_connection())
    click.echo(to_json(asdict(report)))
    if not report.overall:
        raise SystemExit(1)


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@workspace_option
def serve(port: int, host: str, workspace: str):
    """Start the JSON API."""
    os.environ[WORKSPACE_ENV] = os.path.abspath(workspace)
    click.echo(f"Starting vscode-chat-history on http://{host}:{port}")
    uvicorn.run("vscode_chat_history.server:app", host=host, port=port, reload=False)
