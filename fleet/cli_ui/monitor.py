"""Live fleet monitoring for ``fleet watch``.

Runs on the asyncio loop that also hosts the hook watcher, so status
changes, rendering and prompt answers all happen on one thread.
"""

import asyncio
import logging

from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt

from fleet.cli_ui.renderer import SessionTableRenderer
from fleet.core.engine import FleetEngine
from fleet.core.interaction import PromptChoice, PromptRequest
from fleet.core.watcher import HookWatcher

logger = logging.getLogger(__name__)


class LiveFleetMonitor:
    """Real-time terminal view of the fleet with interactive prompts.

    Design Notes:
    - Rich Prompt.ask is blocking, so it runs in the default executor while
      the loop keeps ingesting events; the answer is resolved back on the loop
    - A prompt whose session moved on while the user was answering is
      discarded by the token check in resolve_prompt()
    - The live display is stopped while a prompt is on screen

    USAGE:
        monitor = LiveFleetMonitor(engine, watcher)
        await monitor.run()
    """

    REFRESH_INTERVAL = 0.5  # seconds

    def __init__(
        self,
        engine: FleetEngine,
        watcher: HookWatcher,
        console: Console | None = None,
        interactive: bool = True,
    ):
        self.engine = engine
        self.watcher = watcher
        self.console = console or Console()
        self.interactive = interactive
        self.renderer = SessionTableRenderer(self.console)
        self._cancelled = False

    def cancel(self) -> None:
        """Signal the monitor to stop."""
        self._cancelled = True

    def render(self) -> Panel:
        table = self.renderer.render_sessions(
            self.engine.session_states(),
            focused_session_id=self.engine.focused_session_id,
        )
        footer = (
            f"[bold]{escape(self.engine.summary.text)}[/]  "
            f"[dim]events: {self.watcher.delivered_count}  "
            f"errors: {self.watcher.error_count}  Ctrl+C to quit[/]"
        )
        return Panel(Group(table, footer), title="Agent Fleet")

    async def run(self) -> None:
        """Start the watcher and refresh until cancelled."""
        try:
            self.watcher.start()
            with Live(self.render(), console=self.console, refresh_per_second=4) as live:
                while not self._cancelled:
                    live.update(self.render())

                    # NON-BLOCKING check for new prompts
                    for request in self.engine.prompts.bridge.get_pending_requests():
                        if request.token.is_cancelled:
                            continue
                        if not self.interactive:
                            self.console.print(f"[yellow]{escape(request.message)}[/]")
                            continue
                        live.stop()
                        try:
                            choice = await self._ask(request)
                        finally:
                            live.start()
                        action = self.engine.prompts.resolve_prompt(request.token, choice)
                        if action is None:
                            self.console.print("[dim]Prompt expired; session moved on[/]")

                    await asyncio.sleep(self.REFRESH_INTERVAL)
        finally:
            self.watcher.stop()

    async def _ask(self, request: PromptRequest) -> PromptChoice | None:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._ask_sync, request)

    def _ask_sync(self, request: PromptRequest) -> PromptChoice | None:
        """Blocking prompt. Called from the executor, never on the loop."""
        self.console.print()
        self.console.rule(f"[bold]{escape(request.message)}[/bold]")

        keys = {str(index): choice for index, choice in enumerate(request.choices, start=1)}
        for key, choice in keys.items():
            self.console.print(f"  [{key}] {choice.value}")

        try:
            answer = Prompt.ask("[bold]Choice[/bold]", choices=list(keys), console=self.console)
        except (EOFError, KeyboardInterrupt):
            # Closed without choosing
            return None
        return keys.get(answer)
