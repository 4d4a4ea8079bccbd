"""Progress notifications emitted by the engine.

An observer is any callable taking a :class:`ProgressEvent`. Delivery is
synchronous and fire-and-forget; the engine behaves identically with or
without one.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol

from src.simulation.models import EventType, ProgressEvent


class ProgressObserver(Protocol):
    def __call__(self, event: ProgressEvent) -> None: ...


def null_observer(event: ProgressEvent) -> None:
    """Default observer: ignores every event."""


def make_event(event_type: EventType, **data: Any) -> ProgressEvent:
    """Build an event stamped with the current wall-clock time."""
    return ProgressEvent(type=event_type, timestamp=datetime.now(timezone.utc), data=data)


class EventRecorder:
    """Observer that keeps every event, e.g. for a streaming HTTP handler to drain."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[ProgressEvent]:
        return [e for e in self.events if e.type == event_type]

    @property
    def types(self) -> list[EventType]:
        return [e.type for e in self.events]
