"""Status state machine: what each hook event means for a session.

The transition function is pure. StatusTracker owns the per-directory status
map; everyone else reads snapshots through get() and snapshot().
"""

import logging
from collections.abc import Callable

from fleet.core.bus import MessageBus, StatusChanged
from fleet.core.models import HookEvent, HookEventName, NotificationType, RuntimeStatus
from fleet.core.utils import normalize_directory

logger = logging.getLogger(__name__)

_RUNNING_EVENTS = {
    HookEventName.PRE_TOOL_USE.value,
    HookEventName.PRE_COMPACT.value,
    HookEventName.POST_TOOL_USE.value,
}

_NOTIFICATION_STATUS = {
    NotificationType.PERMISSION_PROMPT.value: RuntimeStatus.STUCK,
    NotificationType.IDLE_PROMPT.value: RuntimeStatus.COMPLETE,
    NotificationType.USER_CANCELLED_TOOL_USE.value: RuntimeStatus.RUNNING,
}


def map_event_to_status(event: HookEvent) -> RuntimeStatus:
    """Map a hook event to the status it implies.

    The prior status never matters: later events always dominate.
    """
    name = event.event_name
    if name in _RUNNING_EVENTS:
        # Starting/finishing a tool or compacting - the agent is working
        return RuntimeStatus.RUNNING
    if name == HookEventName.NOTIFICATION.value:
        # Any notification subtype we don't know means "waiting on the user"
        return _NOTIFICATION_STATUS.get(event.notification_type or "", RuntimeStatus.COMPLETE)
    if name == HookEventName.STOP.value:
        return RuntimeStatus.COMPLETE
    # SessionEnd, SessionStart and anything unrecognized
    return RuntimeStatus.IDLE


def transition(prior: RuntimeStatus, event: HookEvent) -> RuntimeStatus:
    """Pure transition (prior, event) -> new status."""
    return map_event_to_status(event)


class StatusTracker:
    """Owner of the directory -> RuntimeStatus map.

    Every write stores the value, even when unchanged. A StatusChanged message
    is published only when the stored value actually differs, so repeated
    identical events refresh state without spamming subscribers.

    USAGE:
        tracker = StatusTracker(bus, session_lookup=db.get_session_by_directory)
        tracker.apply_event(event)          # from the ingestion watcher
        tracker.reset("/work/app")          # user re-engaged a complete session
        tracker.terminal_closed("/work/app")
    """

    def __init__(
        self,
        bus: MessageBus,
        session_lookup: Callable[[str], object | None] | None = None,
    ):
        self.bus = bus
        self._session_lookup = session_lookup
        self._statuses: dict[str, RuntimeStatus] = {}

    def get(self, directory: str) -> RuntimeStatus:
        """Current status for a directory (idle if never observed)."""
        return self._statuses.get(normalize_directory(directory), RuntimeStatus.IDLE)

    def snapshot(self) -> dict[str, RuntimeStatus]:
        """Copy of the full status map."""
        return dict(self._statuses)

    def apply_event(self, event: HookEvent) -> RuntimeStatus:
        """Apply one hook event to its cwd. Returns the new status."""
        directory = normalize_directory(event.cwd)
        prior = self._statuses.get(directory, RuntimeStatus.IDLE)
        new_status = transition(prior, event)
        logger.debug(f"{event.event_name} for {directory}: {prior.value} -> {new_status.value}")
        self._write(directory, new_status, event)
        return new_status

    def set_status(self, directory: str, status: RuntimeStatus) -> bool:
        """Unconditionally set a status (manual override). Returns True if it changed."""
        return self._write(normalize_directory(directory), status)

    def reset(self, directory: str) -> bool:
        """Acknowledge a completed session: complete -> idle, no-op otherwise."""
        directory = normalize_directory(directory)
        if self._statuses.get(directory, RuntimeStatus.IDLE) != RuntimeStatus.COMPLETE:
            return False
        return self._write(directory, RuntimeStatus.IDLE)

    def terminal_closed(self, directory: str) -> bool:
        """The session's terminal went away: force idle."""
        return self.set_status(directory, RuntimeStatus.IDLE)

    def override_idle(self, directory: str) -> bool:
        """Manual override for a session stuck in a wrong state."""
        return self.set_status(directory, RuntimeStatus.IDLE)

    def restore(self, statuses: dict[str, RuntimeStatus]) -> None:
        """Seed the map from a saved snapshot without publishing anything."""
        for directory, status in statuses.items():
            self._statuses[normalize_directory(directory)] = status

    def forget(self, directory: str) -> None:
        """Drop a directory from the map (session removed)."""
        self._statuses.pop(normalize_directory(directory), None)

    def clear(self) -> None:
        self._statuses.clear()

    def _write(
        self, directory: str, status: RuntimeStatus, event: HookEvent | None = None
    ) -> bool:
        prior = self._statuses.get(directory, RuntimeStatus.IDLE)
        self._statuses[directory] = status
        if prior == status:
            return False

        session_id = None
        if self._session_lookup is not None:
            session = self._session_lookup(directory)
            session_id = getattr(session, "id", None)

        self.bus.publish(
            StatusChanged(
                directory=directory,
                old_status=prior,
                new_status=status,
                session_id=session_id,
                event=event,
            )
        )
        return True
