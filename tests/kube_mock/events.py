"""Event sink that keeps every event in memory."""

from __future__ import annotations

from dataclasses import dataclass, field

from profiling_operator.events import EventReason, EventType
from profiling_operator.models import ProfilingConfig


@dataclass(frozen=True)
class RecordedEvent:
    resource: str
    event_type: EventType
    reason: EventReason
    message: str


@dataclass
class RecordingEventRecorder:
    """EventRecorder that appends to a list."""

    events: list[RecordedEvent] = field(default_factory=list)

    def event(
        self,
        resource: ProfilingConfig,
        event_type: EventType,
        reason: EventReason,
        message: str,
    ) -> None:
        self.events.append(RecordedEvent(resource.key, event_type, reason, message))

    def reasons(self) -> list[EventReason]:
        return [e.reason for e in self.events]
