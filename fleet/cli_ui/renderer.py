"""Rich renderables for session status.

SECURITY: session names and paths are user-controlled; they are escaped
before being placed in markup.
"""

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from fleet.core.models import ChangedFile, FileStatus, RuntimeStatus, SessionState

STATUS_STYLES = {
    RuntimeStatus.RUNNING: "[blue]⟳ running[/]",
    RuntimeStatus.STUCK: "[red bold]! stuck[/]",
    RuntimeStatus.COMPLETE: "[green]✓ complete[/]",
    RuntimeStatus.IDLE: "[dim]○ idle[/]",
}

FILE_STATUS_STYLES = {
    FileStatus.MODIFIED: "yellow",
    FileStatus.ADDED: "green",
    FileStatus.DELETED: "red",
    FileStatus.UNTRACKED: "cyan",
    FileStatus.RENAMED: "blue",
    FileStatus.CONFLICTED: "red bold",
}


class SessionTableRenderer:
    """Renders the fleet's sessions as a Rich table."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def render_sessions(
        self,
        states: list[SessionState],
        focused_session_id: str | None = None,
        change_counts: dict[str, int] | None = None,
        title: str = "Sessions",
    ) -> Table:
        table = Table(title=title)
        table.add_column("", width=1)  # Focus marker
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name", no_wrap=True)
        table.add_column("Status", justify="center")
        table.add_column("Changes", justify="right")
        table.add_column("Directory", style="dim", overflow="fold")

        for state in states:
            session = state.session
            marker = "[bold magenta]*[/]" if session.id == focused_session_id else ""
            changes = ""
            if change_counts is not None and session.id in change_counts:
                changes = str(change_counts[session.id])
            table.add_row(
                marker,
                session.id,
                escape(session.name),
                STATUS_STYLES.get(state.status, state.status.value),
                changes,
                escape(session.directory),
            )
        return table

    def render_changes(self, files: list[ChangedFile], title: str = "Changes") -> Table:
        table = Table(title=escape(title))
        table.add_column("St", justify="center", width=2)
        table.add_column("Path")

        for changed in files:
            style = FILE_STATUS_STYLES.get(changed.status, "white")
            table.add_row(f"[{style}]{changed.status.value}[/]", escape(changed.path))
        return table
