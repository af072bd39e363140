"""Downstream consumers of status transitions.

- StatusSummary: aggregate counters recomputed from a full snapshot.
- PromptCenter: issues a prompt on transitions into stuck/complete, cancels
  it when the session moves on, and executes the answer only if still live.
"""

import logging
from collections.abc import Callable

from fleet.core.bus import MessageBus, SessionsChanged, StatusChanged, Subscription
from fleet.core.interaction import CancellationToken, PromptBridge, PromptChoice, PromptRequest
from fleet.core.models import RuntimeStatus, Session, SessionState

logger = logging.getLogger(__name__)

PROMPT_STATUSES = {RuntimeStatus.STUCK, RuntimeStatus.COMPLETE}

# Display order for summaries
SUMMARY_ORDER = [
    RuntimeStatus.RUNNING,
    RuntimeStatus.STUCK,
    RuntimeStatus.COMPLETE,
    RuntimeStatus.IDLE,
]


def count_statuses(states: list[SessionState]) -> dict[RuntimeStatus, int]:
    counts = {status: 0 for status in SUMMARY_ORDER}
    for state in states:
        counts[state.status] += 1
    return counts


def summary_text(states: list[SessionState]) -> str:
    """One-line summary showing only non-zero counts."""
    if not states:
        return "No sessions"
    counts = count_statuses(states)
    return " | ".join(
        f"{status.value} {counts[status]}" for status in SUMMARY_ORDER if counts[status]
    )


class StatusSummary:
    """Aggregate status counters, recomputed on every change."""

    def __init__(
        self,
        bus: MessageBus,
        snapshot: Callable[[], list[SessionState]],
        on_update: Callable[["StatusSummary"], None] | None = None,
    ):
        self._snapshot = snapshot
        self.on_update = on_update
        self.counts: dict[RuntimeStatus, int] = {status: 0 for status in SUMMARY_ORDER}
        self.text = "No sessions"
        self.total = 0
        self._subscriptions = [
            bus.subscribe(StatusChanged, lambda _msg: self.refresh()),
            bus.subscribe(SessionsChanged, lambda _msg: self.refresh()),
        ]
        self.refresh()

    def refresh(self) -> None:
        states = self._snapshot()
        self.total = len(states)
        self.counts = count_statuses(states)
        self.text = summary_text(states)
        if self.on_update is not None:
            self.on_update(self)

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()


class PromptCenter:
    """Turns status transitions into user prompts and executes their answers.

    ``execute`` is called with (choice, session_id, prompted_status) for
    answers that are still relevant when they arrive.
    """

    def __init__(
        self,
        bus: MessageBus,
        session_lookup: Callable[[str], Session | None],
        execute: Callable[[PromptChoice, str, RuntimeStatus], None],
        bridge: PromptBridge | None = None,
    ):
        self.bridge = bridge if bridge is not None else PromptBridge()
        self._session_lookup = session_lookup
        self._execute = execute
        self._subscription: Subscription = bus.subscribe(StatusChanged, self._on_status_changed)

    def _on_status_changed(self, message: StatusChanged) -> None:
        if message.session_id is None:
            return
        # Any change makes an outstanding prompt stale
        self.bridge.dismiss(message.session_id, reason="status changed")

        if message.new_status not in PROMPT_STATUSES:
            return
        session = self._session_lookup(message.session_id)
        if session is None:
            return
        self.issue_prompt(session, message.new_status)

    def issue_prompt(self, session: Session, status: RuntimeStatus) -> PromptRequest:
        request = self.bridge.issue(session.id, session.name, status)
        logger.debug(f"Issued {request.token.id}: {request.message}")
        return request

    def dismiss(self, session_id: str) -> bool:
        """Cancel the pending prompt (e.g. its terminal was brought to front)."""
        return self.bridge.dismiss(session_id, reason="terminal focused")

    def resolve_prompt(
        self, token: CancellationToken, choice: PromptChoice | None
    ) -> PromptChoice | None:
        """Apply the user's answer. Returns the executed choice, or None if discarded."""
        action = self.bridge.resolve(token, choice)
        if action is None:
            return None
        if action == PromptChoice.DISMISS and token.status != RuntimeStatus.COMPLETE:
            # Nothing to undo for a stuck prompt
            return action

        try:
            self._execute(action, token.session_id, token.status)
        except Exception as e:
            logger.warning(f"Prompt action '{action.value}' for {token.session_id} failed: {e}")
        return action

    def close(self) -> None:
        self._subscription.unsubscribe()
