"""Two-phase prompt protocol between the core and whatever UI shows prompts.

The core never blocks on a user. It issues a prompt and gets back a request
carrying a CancellationToken; the UI picks pending requests up whenever it
likes and later calls resolve(). If the session moved on in the meantime the
token has been cancelled and the answer is discarded.

USAGE (core side):
    request = bridge.issue(session_id, name, RuntimeStatus.STUCK)
    bridge.dismiss(session_id)            # status changed again

USAGE (UI side):
    for request in bridge.get_pending_requests():
        choice = ask_user(request)        # may take minutes
        action = bridge.resolve(request.token, choice)
        if action is not None:
            ...                           # still relevant, execute it
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from fleet.core.models import RuntimeStatus

logger = logging.getLogger(__name__)


class PromptChoice(str, Enum):
    """Actions a user can pick on a status prompt."""

    OPEN_TERMINAL = "Open Terminal"
    FOCUS_WORKSPACE = "Focus Workspace"
    DISMISS = "Dismiss"


PROMPT_CHOICES: dict[RuntimeStatus, list[PromptChoice]] = {
    RuntimeStatus.STUCK: [PromptChoice.OPEN_TERMINAL, PromptChoice.DISMISS],
    RuntimeStatus.COMPLETE: [
        PromptChoice.FOCUS_WORKSPACE,
        PromptChoice.OPEN_TERMINAL,
        PromptChoice.DISMISS,
    ],
}


class CancellationToken:
    """Marks an outstanding prompt as stale once its session moves on."""

    def __init__(self, session_id: str, status: RuntimeStatus):
        self.id = f"prompt-{uuid.uuid4().hex[:8]}"
        self.session_id = session_id
        self.status = status  # Status the prompt was issued for
        self.reason: str | None = None
        self.resolved = False

    @property
    def is_cancelled(self) -> bool:
        return self.reason is not None

    def cancel(self, reason: str = "dismissed") -> None:
        if self.reason is None:
            self.reason = reason

    def __repr__(self) -> str:
        state = f"cancelled:{self.reason}" if self.is_cancelled else "live"
        return f"CancellationToken({self.id}, {self.session_id}, {state})"


@dataclass
class PromptRequest:
    """A prompt waiting for a user's answer."""

    token: CancellationToken
    session_id: str
    session_name: str
    status: RuntimeStatus
    message: str
    choices: list[PromptChoice]
    created_at: float = field(default_factory=time.time)


def prompt_message(session_name: str, status: RuntimeStatus) -> str:
    if status == RuntimeStatus.STUCK:
        return f'Agent "{session_name}" is waiting for input'
    return f'Agent "{session_name}" completed!'


class PromptBridge:
    """Bookkeeping for outstanding prompts, one live prompt per session."""

    def __init__(self):
        self._outstanding: dict[str, PromptRequest] = {}
        self._undelivered: list[PromptRequest] = []

    def issue(self, session_id: str, session_name: str, status: RuntimeStatus) -> PromptRequest:
        """Issue a prompt for a transition into stuck or complete.

        Any older prompt for the same session is cancelled first.
        """
        if status not in PROMPT_CHOICES:
            raise ValueError(f"No prompt for status '{status.value}'")
        self.dismiss(session_id, reason="superseded")

        request = PromptRequest(
            token=CancellationToken(session_id, status),
            session_id=session_id,
            session_name=session_name,
            status=status,
            message=prompt_message(session_name, status),
            choices=list(PROMPT_CHOICES[status]),
        )
        self._outstanding[session_id] = request
        self._undelivered.append(request)
        return request

    def get_pending_requests(self) -> list[PromptRequest]:
        """Hand newly issued, still-live requests to the UI. NON-BLOCKING.

        Each request is handed out once.
        """
        requests = [r for r in self._undelivered if not r.token.is_cancelled]
        self._undelivered.clear()
        return requests

    def outstanding(self, session_id: str) -> PromptRequest | None:
        return self._outstanding.get(session_id)

    def dismiss(self, session_id: str, reason: str = "dismissed") -> bool:
        """Cancel the outstanding prompt for a session. Returns True if one was live."""
        request = self._outstanding.pop(session_id, None)
        if request is None:
            return False
        request.token.cancel(reason)
        logger.debug(f"Prompt {request.token.id} for {session_id} {reason}")
        return True

    def resolve(
        self, token: CancellationToken, choice: PromptChoice | None
    ) -> PromptChoice | None:
        """Record the user's answer.

        Returns the choice to act on, or None when the answer must be
        discarded (token cancelled, or already resolved). ``choice`` is None
        when the prompt was closed without picking anything; for a complete
        prompt that is treated as DISMISS.
        """
        if token.resolved:
            return None
        token.resolved = True

        request = self._outstanding.get(token.session_id)
        if request is not None and request.token is token:
            del self._outstanding[token.session_id]

        if token.is_cancelled:
            logger.debug(f"Discarding answer to stale prompt {token.id} ({token.reason})")
            return None
        if choice is None:
            return PromptChoice.DISMISS
        return choice
