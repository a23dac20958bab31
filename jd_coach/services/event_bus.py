"""
In-process event bus.

Event names and payloads (camelCase dicts):
    state-changed  { sessionId, revision, overallFit, requirements: [...] }
    update         { sessionId, revision, updatedAt, overallFit, groups: [...] }
    guidance       GuidancePrompt
    conflict       ConflictRecord
    jd-updated     { requirements: [...], plan: {...} | null, planVersion }

Delivery is best-effort: a failing handler is logged and skipped, it never
reaches the component that emitted the event.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from jd_coach.models.enums import EventName

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventName, dict[str, Any]], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[EventName, list[EventHandler]] = {}
        self._global_handlers: list[EventHandler] = []

    def subscribe(self, name: EventName, handler: EventHandler) -> None:
        self._handlers.setdefault(name, []).append(handler)
        logger.debug(f"Subscribed handler to {name.value}")

    def subscribe_all(self, handler: EventHandler) -> None:
        self._global_handlers.append(handler)

    def unsubscribe(self, name: EventName, handler: EventHandler) -> None:
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)
        elif handler in self._global_handlers:
            self._global_handlers.remove(handler)
        else:
            logger.warning(f"Handler not found for {name.value}")

    def emit(self, name: EventName, payload: dict[str, Any]) -> None:
        logger.debug(f"Emitting {name.value} for session {payload.get('sessionId', '-')}")
        for handler in [*self._handlers.get(name, []), *self._global_handlers]:
            try:
                handler(name, payload)
            except Exception as exc:
                logger.error(f"Error in event handler for {name.value}: {exc}")

    def clear(self) -> None:
        self._handlers.clear()
        self._global_handlers.clear()


class EventRecorder:
    """Collects every event; handy for the CLI replay and for tests."""

    def __init__(self, bus: EventBus | None = None):
        self.events: list[tuple[EventName, dict[str, Any]]] = []
        if bus is not None:
            bus.subscribe_all(self)

    def __call__(self, name: EventName, payload: dict[str, Any]) -> None:
        self.events.append((name, payload))

    def of(self, name: EventName) -> list[dict[str, Any]]:
        return [payload for event, payload in self.events if event == name]
