"""Main CLI entry point for brandprobe."""

import asyncio
import logging

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__, db, execution_log
from .config import settings
from .errors import BrandProbeError, ConfigurationError
from .events import EventType, SessionEvent
from .execution_log import LogLevel
from .lifecycle import SessionLifecycleManager
from .progress import build_broadcaster

console = Console()

LEVEL_STYLES = {"info": "cyan", "warning": "yellow", "error": "red"}


def _render_event(event: SessionEvent) -> None:
    data = event.data
    if event.type == EventType.ERROR:
        console.print(f"[bold red]Error:[/bold red] {data.get('message')}")
        return

    status = data.get("status")
    counts = f"[green]{data.get('successCount', 0)}✓[/green] [red]{data.get('failedCount', 0)}✗[/red]"
    position = f"{data.get('currentQuery', 0)}/{data.get('totalQueries', 0)}"
    eta = data.get("estimatedTimeRemaining")
    eta_str = f" ETA {eta}s" if eta is not None else ""
    if status == "running":
        console.print(
            f"[dim]{position}[/dim] {counts} [cyan]{data.get('currentEngine', '')}[/cyan]"
            f" {data.get('message', '')}[dim]{eta_str}[/dim]"
        )
    else:
        style = "green" if status == "completed" else "red"
        console.print(Panel(data.get("message", status or ""), title=f"Session {status}", style=style))


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Brand visibility batch execution CLI.

    Run analysis sessions against generative answer engines and inspect their results.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command(name="init-db")
@click.option("--drop", is_flag=True, help="Drop existing tables first")
def init_db(drop: bool) -> None:
    """Create database tables from the ORM metadata (development)."""

    async def create() -> None:
        if drop:
            await db.drop_db()
        await db.init_db()

    asyncio.run(create())
    console.print("[green]Database schema created[/green]")


@main.command(name="db-info")
def db_info() -> None:
    """Show database connection info."""
    console.print(
        Panel(
            f"Host: {settings.db_host}\n"
            f"Port: {settings.db_port}\n"
            f"Database: {settings.db_name}\n"
            f"User: {settings.db_user}\n"
            f"Override: {'yes' if settings.database_url_override else 'no'}",
            title="Database Configuration",
        )
    )


@main.command(name="create-session")
@click.argument("project_id")
def create_session(project_id: str) -> None:
    """Create a pending analysis session for a project.

    PROJECT_ID: The project to analyse
    """

    async def create() -> str:
        async with db.get_session() as session:
            project = await db.get_project(session, project_id)
            if project is None:
                raise click.ClickException(f"Project not found: {project_id}")
            record = await db.create_analysis_session(session, project)
            return record.id

    session_id = asyncio.run(create())
    console.print(f"Created session [cyan]{session_id}[/cyan]")


@main.command()
@click.argument("session_id")
def run(session_id: str) -> None:
    """Run a pending session in the foreground, streaming progress.

    SESSION_ID: The analysis session identifier
    """

    async def run_session() -> str:
        broadcaster = build_broadcaster(settings)
        manager = SessionLifecycleManager.from_settings(settings, broadcaster=broadcaster)
        observer = broadcaster.attach(session_id)

        async def render() -> None:
            async for event in observer:
                _render_event(event)

        renderer = asyncio.create_task(render())
        try:
            outcome = await manager.run(session_id)
        except ConfigurationError as e:
            observer.detach()
            await renderer
            raise click.ClickException(f"{e} ({e.reason})") from e
        except BrandProbeError as e:
            renderer.cancel()
            raise click.ClickException(str(e)) from e
        finally:
            await broadcaster.close()

        await renderer
        return outcome.status

    status = asyncio.run(run_session())
    if status != "completed":
        raise SystemExit(1)


@main.command()
@click.argument("session_id")
def status(session_id: str) -> None:
    """Show status of a session.

    SESSION_ID: The analysis session identifier
    """

    async def show_status() -> None:
        async with db.get_session() as session:
            record = await db.get_analysis_session(session, session_id)
            if not record:
                console.print(f"[red]Session not found: {session_id}[/red]")
                return

            started = record.started_at.strftime("%Y-%m-%d %H:%M") if record.started_at else "-"
            completed = (
                record.completed_at.strftime("%Y-%m-%d %H:%M") if record.completed_at else "-"
            )
            body = (
                f"Status: [cyan]{record.status}[/cyan]\n"
                f"Tasks: {record.success_count + record.failed_count}/{record.total_tasks}"
                f" ([green]{record.success_count} ok[/green], [red]{record.failed_count} failed[/red])\n"
                f"Started: {started}\n"
                f"Completed: {completed}"
            )
            if record.error_message:
                body += f"\n\n[red]{record.error_message}[/red]"
            console.print(Panel(body, title=f"Session: {record.id}"))

    asyncio.run(show_status())


@main.command()
@click.argument("session_id")
@click.option(
    "--level",
    type=click.Choice([level.value for level in LogLevel]),
    default=None,
    help="Only show entries of this level",
)
def logs(session_id: str, level: str | None) -> None:
    """Show the execution log of a session."""

    async def show_logs() -> None:
        entries = await execution_log.list_entries(session_id, level)
        if not entries:
            console.print("[dim]No log entries[/dim]")
            return

        table = Table(title=f"Execution log: {session_id}")
        table.add_column("Time", style="dim")
        table.add_column("Level")
        table.add_column("Message")
        for entry in entries:
            style = LEVEL_STYLES.get(entry.level, "white")
            table.add_row(
                entry.created_at.strftime("%H:%M:%S") if entry.created_at else "-",
                f"[{style}]{entry.level}[/{style}]",
                entry.message,
            )
        console.print(table)

    asyncio.run(show_logs())


@main.command()
@click.argument("session_id")
def actions(session_id: str) -> None:
    """List strategic action items generated for a session."""

    async def show_actions() -> None:
        async with db.get_session() as session:
            items = await db.get_action_items(session, session_id)
        if not items:
            console.print("[dim]No action items[/dim]")
            return

        table = Table(title="Action Items")
        table.add_column("Priority", style="cyan")
        table.add_column("Type")
        table.add_column("Title")
        table.add_column("Status")
        for item in items:
            table.add_row(item.priority, item.action_type, item.title, item.status)
        console.print(table)

    asyncio.run(show_actions())


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Bind port")
def serve(host: str, port: int) -> None:
    """Serve the HTTP/SSE/WebSocket API."""
    import uvicorn

    from .api import create_app

    broadcaster = build_broadcaster(settings)
    manager = SessionLifecycleManager.from_settings(settings, broadcaster=broadcaster)
    uvicorn.run(create_app(manager, broadcaster), host=host, port=port)


if __name__ == "__main__":
    main()
