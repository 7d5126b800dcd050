"""Event system for session observability.

This package provides the in-process event infrastructure used by the
interactive session: the LLM layer, tools and state machine publish events,
and the console and metrics accumulator consume them.

Key Components:
    - EventType: Enum of all event types in the system
    - SessionEvent: Pydantic model for events flowing through the bus
    - EventBus: Async pub/sub implementation for event distribution
    - LLMMetrics: Token and latency metrics for individual LLM calls
    - SessionMetrics: Aggregate metrics for the whole session

Usage:
    >>> from events import EventBus, EventType
    >>>
    >>> bus = EventBus()
    >>> queue = bus.subscribe()
    >>> await bus.emit(EventType.STATE_ENTERED, state="waiting_for_input")
    >>> event = await queue.get()
    >>> print(f"Received: {event.type.value}")
"""

from events.bus import EventBus, track_metrics
from events.types import (
    EventType,
    LLMMetrics,
    SessionEvent,
    SessionMetrics,
)

__all__ = [
    # Event types
    "EventType",
    "SessionEvent",
    "LLMMetrics",
    "SessionMetrics",
    # Event bus
    "EventBus",
    "track_metrics",
]
