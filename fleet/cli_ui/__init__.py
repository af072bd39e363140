"""Terminal UI components for the fleet CLI.

- Session and change-set tables
- Live monitoring with interactive status prompts
"""

from fleet.cli_ui.monitor import LiveFleetMonitor
from fleet.cli_ui.renderer import SessionTableRenderer

__all__ = [
    "LiveFleetMonitor",
    "SessionTableRenderer",
]
