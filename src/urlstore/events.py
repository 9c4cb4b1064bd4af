"""Event dispatch for backends.

:class:`Event` is the payload handed to listeners and :class:`EventEmitter`
is the mixin every backend inherits to expose ``on`` / ``off`` / ``emit``.

Events emitted by the core:

* ``"login"`` -- a backend transitioned into the authenticated state.
* ``"logout"`` -- a previously authenticated backend logged out.
* ``"permissionschange"`` -- ``event.detail`` lists the changed permission names.

Listeners run synchronously in registration order. A failing listener is
logged and does not prevent the remaining listeners from running.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[["Event"], Any]


@dataclass
class Event:
    """An event delivered to listeners.

    Attributes:
        type: Event name (e.g. ``"login"``).
        target: The object that emitted the event.
        detail: Optional event-specific payload.
    """

    type: str
    target: Any = None
    detail: Any = None


class EventEmitter:
    """Minimal listener registry keyed by event name."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event_type: str, listener: Listener) -> None:
        """Register *listener* for *event_type*. Registering twice is a no-op."""
        listeners = self._listeners.setdefault(event_type, [])
        if listener not in listeners:
            listeners.append(listener)

    def off(self, event_type: str, listener: Listener) -> None:
        """Remove *listener*; unknown listeners are ignored."""
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event_type: str, detail: Any = None) -> Event:
        """Dispatch an event to every listener registered for *event_type*.

        Returns:
            The :class:`Event` that was dispatched.
        """
        event = Event(type=event_type, target=self, detail=detail)
        for listener in list(self._listeners.get(event_type, [])):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener for '%s' failed", event_type)
        return event
