"""CLI entry point for Agent Fleet.

Commands:
- fleet init: Create the fleet home (config.yaml, state.db)
- fleet add / remove: Register or drop a session directory
- fleet status: Show sessions, statuses and change counts
- fleet focus / unfocus: Move the single focused workspace folder
- fleet reset / idle / terminal: Status commands for the watch process
- fleet changes / diff: Inspect a session's uncommitted changes
- fleet ingest: Apply one notification file by hand
- fleet install-hooks / uninstall-hooks: Edit the Claude Code settings
- fleet watch: Follow hook events live, with interactive prompts
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax

from fleet import __version__
from fleet.cli_ui.monitor import LiveFleetMonitor
from fleet.cli_ui.renderer import SessionTableRenderer
from fleet.core.config import CONFIG_FILE_NAME, DEFAULT_CONFIG_YAML, HOME_ENV_VAR, FleetConfig, load_config
from fleet.core.engine import ControlAction, FleetEngine
from fleet.core.errors import FleetError
from fleet.core.models import Session
from fleet.core.state import Database

console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _print_cd_hint(session: Session) -> None:
    """Terminal host for the CLI: there is no terminal to raise, so say where to go."""
    console.print(f"[cyan]{escape(session.name)}[/]: cd {escape(session.directory)}")


def get_engine(ctx: click.Context) -> FleetEngine:
    """Engine for the current invocation, created on first use."""
    obj = ctx.ensure_object(dict)
    if "engine" not in obj:
        obj["engine"] = FleetEngine(obj["config"], terminal_host=_print_cd_hint)
        ctx.call_on_close(obj["engine"].close)
    return obj["engine"]


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    envvar=HOME_ENV_VAR,
    default=None,
    help="Fleet home directory (default: ~/.agent-fleet)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, home: Path | None, verbose: bool) -> None:
    """Agent Fleet - supervise many Claude Code sessions at once.

    Tracks what each session's agent is doing from its hook events and
    keeps one session at a time focused in the workspace.
    """
    config = load_config(home)
    _setup_logging("DEBUG" if verbose else config.log_level)
    ctx.ensure_object(dict)["config"] = config


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the fleet home directory."""
    config: FleetConfig = ctx.obj["config"]
    config_path = config.home / CONFIG_FILE_NAME

    if config_path.exists():
        console.print("[yellow]Fleet already initialized[/yellow]")
        return

    config.home.mkdir(parents=True, exist_ok=True)
    config.events_dir.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_YAML)

    # Initialize database
    Database(config.db_path)

    console.print(
        Panel(
            "[green]Fleet initialized![/green]\n\n"
            f"Created: {config.home}\n"
            "- config.yaml: Fleet configuration\n"
            "- events/: Hook notification drop-box\n"
            "- state.db: Session registry\n\n"
            "Next: [bold]fleet install-hooks[/bold]",
            title="Agent Fleet Initialized",
        )
    )


@main.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--name", "-n", help="Display name (default: directory name)")
@click.pass_context
def add(ctx: click.Context, directory: str, name: str | None) -> None:
    """Track DIRECTORY as a session."""
    try:
        session = get_engine(ctx).add_session(directory, name=name)
    except FleetError as e:
        _fail(str(e))
    console.print(f"[green]Added[/green] {escape(session.name)} ({session.id})")


@main.command()
@click.argument("session_id")
@click.pass_context
def remove(ctx: click.Context, session_id: str) -> None:
    """Stop tracking a session."""
    try:
        session = get_engine(ctx).remove_session(session_id)
    except FleetError as e:
        _fail(str(e))
    console.print(f"[green]Removed[/green] {escape(session.name)}")


@main.command()
@click.option("--changes/--no-changes", default=True, help="Count changed files per session")
@click.pass_context
def status(ctx: click.Context, changes: bool) -> None:
    """Show all sessions with their last known status."""
    engine = get_engine(ctx)
    states = engine.session_states()

    if not engine.hooks_installed():
        console.print(
            "[yellow]Hooks are not installed; statuses will not update. "
            "Run 'fleet install-hooks'.[/yellow]"
        )

    if not states:
        console.print("[yellow]No sessions. Add one with 'fleet add DIRECTORY'.[/yellow]")
        return

    change_counts = None
    if changes:
        change_counts = {
            state.session.id: len(engine.changed_files(state.session.id)) for state in states
        }

    renderer = SessionTableRenderer(console)
    console.print(
        renderer.render_sessions(
            states,
            focused_session_id=engine.focused_session_id,
            change_counts=change_counts,
        )
    )
    console.print(f"[bold]{escape(engine.summary.text)}[/bold]")


@main.command()
@click.argument("session_id")
@click.pass_context
def focus(ctx: click.Context, session_id: str) -> None:
    """Make SESSION_ID the focused workspace folder."""
    engine = get_engine(ctx)
    try:
        session = engine.get_session_or_raise(session_id)
        if not engine.arbiter.focus(session):
            _fail("Workspace rejected the folder change")
        # Focusing acknowledges a complete session
        engine.send_control(session.id, ControlAction.RESET)
    except (FleetError, OSError) as e:
        _fail(str(e))
    console.print(f"[green]Focused[/green] {escape(session.name)}")


@main.command()
@click.pass_context
def unfocus(ctx: click.Context) -> None:
    """Remove the focused session folder from the workspace."""
    if not get_engine(ctx).unfocus_workspace():
        _fail("Workspace rejected the folder change")
    console.print("[green]Workspace unfocused[/green]")


def _queue_control(ctx: click.Context, session_id: str, action: str, done: str) -> None:
    try:
        get_engine(ctx).send_control(session_id, action)
    except (FleetError, OSError) as e:
        _fail(str(e))
    console.print(f"[green]{done}[/green] [dim](applied by 'fleet watch')[/dim]")


@main.command()
@click.argument("session_id")
@click.pass_context
def reset(ctx: click.Context, session_id: str) -> None:
    """Acknowledge a complete session (complete -> idle)."""
    _queue_control(ctx, session_id, ControlAction.RESET, "Reset queued")


@main.command()
@click.argument("session_id")
@click.pass_context
def idle(ctx: click.Context, session_id: str) -> None:
    """Force a session back to idle."""
    _queue_control(ctx, session_id, ControlAction.IDLE, "Idle queued")


@main.command()
@click.argument("session_id")
@click.argument("event", type=click.Choice(["focused", "closed"]))
@click.pass_context
def terminal(ctx: click.Context, session_id: str, event: str) -> None:
    """Report that a session's terminal was focused or closed."""
    action = ControlAction.TERMINAL_FOCUSED if event == "focused" else ControlAction.TERMINAL_CLOSED
    _queue_control(ctx, session_id, action, f"Terminal {event} queued")


@main.command()
@click.argument("session_id")
@click.option("--refresh", is_flag=True, help="Drop the cached change set first")
@click.pass_context
def changes(ctx: click.Context, session_id: str, refresh: bool) -> None:
    """List a session's uncommitted changes."""
    engine = get_engine(ctx)
    try:
        session = engine.get_session_or_raise(session_id)
        files = engine.changed_files(session.id, refresh=refresh)
    except FleetError as e:
        _fail(str(e))

    if not files:
        console.print("[dim]No changes[/dim]")
        return
    renderer = SessionTableRenderer(console)
    console.print(renderer.render_changes(files, title=f"Changes: {session.name}"))


@main.command()
@click.argument("session_id")
@click.argument("path")
@click.pass_context
def diff(ctx: click.Context, session_id: str, path: str) -> None:
    """Show the diff of PATH (relative to the session directory) against HEAD."""
    try:
        text = get_engine(ctx).diff(session_id, path)
    except FleetError as e:
        _fail(str(e))
    if not text:
        console.print("[dim]No diff available[/dim]")
        return
    console.print(Syntax(text, "diff", word_wrap=True))


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def ingest(ctx: click.Context, file: Path) -> None:
    """Apply one notification FILE as if the watcher had read it."""
    engine = get_engine(ctx)
    try:
        event = engine.ingest_file(file)
    except FleetError as e:
        _fail(str(e))
    status_now = engine.tracker.get(event.cwd)
    console.print(f"{escape(event.event_name)} for {escape(event.cwd)}: [bold]{status_now.value}[/bold]")


@main.command("install-hooks")
@click.pass_context
def install_hooks(ctx: click.Context) -> None:
    """Add the fleet's hooks to ~/.claude/settings.json."""
    engine = get_engine(ctx)
    if not engine.installer.host_installed():
        console.print(
            f"[yellow]{escape(str(engine.installer.settings_path.parent))} does not exist; "
            "is Claude Code installed? Creating it.[/yellow]"
        )
    result = engine.install_hooks()
    if not result.success:
        _fail(result.message)
    console.print(f"[green]{result.message}[/green]")


@main.command("uninstall-hooks")
@click.pass_context
def uninstall_hooks(ctx: click.Context) -> None:
    """Remove the fleet's hooks from ~/.claude/settings.json."""
    result = get_engine(ctx).uninstall_hooks()
    if not result.success:
        _fail(result.message)
    console.print(f"[green]{result.message}[/green]")


@main.command()
@click.option("--no-prompts", is_flag=True, help="Print prompts instead of asking")
@click.pass_context
def watch(ctx: click.Context, no_prompts: bool) -> None:
    """Follow hook events and show live session status."""
    engine = get_engine(ctx)
    engine.take_status_ownership()

    async def run() -> None:
        loop = asyncio.get_running_loop()
        watcher = engine.make_watcher(loop)
        monitor = LiveFleetMonitor(engine, watcher, console=console, interactive=not no_prompts)
        await monitor.run()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped watching[/yellow]")


if __name__ == "__main__":
    main()
