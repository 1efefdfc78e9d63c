"""
Event types and per-session event channels.

Each language-server session owns one EventChannel. Subscribers register a
callback for the lifetime of a single wait and remove it afterwards; there is
no process-wide bus.
"""

import logging
from typing import Callable, Generic, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BaseModel)


class Event(BaseModel):
    """Domain event that can be published to subscribers."""

    type: str


class DiagnosticsEvent(Event):
    """A server published a fresh diagnostics snapshot for one file."""

    type: str = "lsp.client.diagnostics"
    server_id: str
    path: str


class EventChannel(Generic[E]):
    """Synchronous publish/subscribe registry scoped to one owner."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[E], None]] = []

    def subscribe(self, callback: Callable[[E], None]) -> Callable[[], None]:
        """
        Register a callback for every published event.

        Returns:
            A function that removes the subscription. Calling it more than
            once is harmless.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: E) -> None:
        """Deliver an event to every current subscriber."""
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed for %s", event.type)

    def __len__(self) -> int:
        return len(self._subscribers)
