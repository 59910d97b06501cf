"""Event sink protocol and an in-memory implementation."""

from typing import Iterator, List, Protocol, runtime_checkable

from .models import EngineEvent


@runtime_checkable
class EventSink(Protocol):
    """Receives events as the run produces them. ``enqueue`` must not block."""

    def enqueue(self, event: EngineEvent) -> None: ...


class EventBuffer:
    """Collects events in emission order."""

    def __init__(self) -> None:
        self.events: List[EngineEvent] = []

    def enqueue(self, event: EngineEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[EngineEvent]:
        """Return the buffered events of one type."""
        return [event for event in self.events if event.type == event_type]

    def drain(self) -> List[EngineEvent]:
        """Return all buffered events and clear the buffer."""
        events, self.events = self.events, []
        return events

    def __iter__(self) -> Iterator[EngineEvent]:
        return iter(list(self.events))

    def __len__(self) -> int:
        return len(self.events)
