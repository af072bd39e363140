"""In-process message bus for status transitions.

The bus is a plain registry of subscriber callbacks keyed by message type.
It has no dependency on any UI toolkit: the CLI monitor, the status summary
and the prompt center all subscribe through it.

USAGE:
    bus = MessageBus()
    sub = bus.subscribe(StatusChanged, lambda msg: print(msg.new_status))
    bus.publish(StatusChanged(directory="/work/app", old_status=..., new_status=...))
    sub.unsubscribe()
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from fleet.core.models import HookEvent, RuntimeStatus

logger = logging.getLogger(__name__)

M = TypeVar("M")


@dataclass(frozen=True)
class StatusChanged:
    """A directory's runtime status actually changed value."""

    directory: str
    old_status: RuntimeStatus
    new_status: RuntimeStatus
    session_id: str | None = None  # None when no session tracks the directory
    event: HookEvent | None = None  # None for resets and overrides


@dataclass(frozen=True)
class SessionsChanged:
    """The session registry changed (session added or removed)."""

    session_id: str
    removed: bool = False


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to detach."""

    def __init__(self, bus: "MessageBus", message_type: type, handler: Callable[[Any], None]):
        self._bus = bus
        self._message_type = message_type
        self._handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self._message_type, self._handler)
            self.active = False


class MessageBus:
    """Synchronous fan-out of messages to subscribers.

    Handlers run in subscription order on the caller's thread. A failing
    handler is logged and skipped; it never prevents delivery to the others
    and never propagates back into the publisher (the ingestion pipeline).
    """

    def __init__(self):
        self._handlers: dict[type, list[Callable[[Any], None]]] = {}

    def subscribe(self, message_type: type[M], handler: Callable[[M], None]) -> Subscription:
        self._handlers.setdefault(message_type, []).append(handler)
        return Subscription(self, message_type, handler)

    def _remove(self, message_type: type, handler: Callable[[Any], None]) -> None:
        handlers = self._handlers.get(message_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, message: object) -> int:
        """Deliver message to every handler subscribed to its type or a base type.

        Returns the number of handlers that ran without raising.
        """
        delivered = 0
        for message_type in type(message).__mro__:
            # Copy: handlers may unsubscribe while we iterate
            for handler in list(self._handlers.get(message_type, [])):
                try:
                    handler(message)
                    delivered += 1
                except Exception as e:
                    logger.warning(
                        f"Subscriber {getattr(handler, '__qualname__', handler)!r} failed "
                        f"on {type(message).__name__}: {e}"
                    )
        return delivered
