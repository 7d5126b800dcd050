"""In-process event bus for session observability.

The bus is single-threaded and cooperative, like the session that owns it.
Consumers either register a listener callback (invoked synchronously on
publish, used by the console and the metrics accumulator) or subscribe an
asyncio.Queue (used by tests and background consumers).
"""

import asyncio
from collections.abc import Callable

import structlog

from events.types import EventType, LLMMetrics, SessionEvent, SessionMetrics

logger = structlog.get_logger(__name__)

EventListener = Callable[[SessionEvent], None]


class EventBus:
    """Pub/sub bus for session events.

    Usage:
        >>> bus = EventBus()
        >>> queue = bus.subscribe()
        >>> await bus.publish(SessionEvent(type=EventType.SESSION_STARTED))
        >>> event = queue.get_nowait()

    Attributes:
        _queues: Subscriber queues receiving every event.
        _listeners: Callbacks invoked for matching event types.
        _history: Bounded list of published events.
    """

    MAX_HISTORY = 2000

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue[SessionEvent]] = []
        self._listeners: list[tuple[frozenset[EventType] | None, EventListener]] = []
        self._history: list[SessionEvent] = []

    def subscribe(self) -> asyncio.Queue[SessionEvent]:
        """Register a new queue that receives every subsequent event."""
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[SessionEvent]) -> None:
        try:
            self._queues.remove(queue)
        except ValueError:
            logger.warning("unsubscribe_queue_not_found")

    def add_listener(
        self,
        listener: EventListener,
        event_types: set[EventType] | None = None,
    ) -> None:
        """Register a callback, optionally filtered to some event types."""
        types = frozenset(event_types) if event_types else None
        self._listeners.append((types, listener))

    async def publish(self, event: SessionEvent) -> None:
        """Deliver an event to every queue and matching listener.

        A failing listener is logged and skipped so one bad consumer cannot
        break the producer.
        """
        self._history.append(event)
        if len(self._history) > self.MAX_HISTORY:
            self._history = self._history[-self.MAX_HISTORY:]

        for queue in self._queues:
            queue.put_nowait(event)

        for types, listener in self._listeners:
            if types is not None and event.type not in types:
                continue
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    "event_listener_failed",
                    event_type=event.type.value,
                    error=str(e),
                )

        logger.debug("event_published", event_type=event.type.value)

    async def emit(self, event_type: EventType, **data: object) -> None:
        """Shorthand for publishing an event built from keyword data."""
        await self.publish(SessionEvent(type=event_type, data=dict(data)))

    def get_history(self, event_type: EventType | None = None) -> list[SessionEvent]:
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]


def track_metrics(bus: EventBus, metrics: SessionMetrics) -> None:
    """Accumulate LLM and tool-call counts from the bus into ``metrics``."""

    def _on_event(event: SessionEvent) -> None:
        if event.type == EventType.LLM_CALL_COMPLETE:
            metrics.add_llm_call(LLMMetrics.model_validate(event.data))
        elif event.type == EventType.TOOL_CALL:
            metrics.add_tool_call()

    bus.add_listener(_on_event, {EventType.LLM_CALL_COMPLETE, EventType.TOOL_CALL})
