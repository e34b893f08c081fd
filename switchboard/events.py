"""
Typed events for Switchboard.

Components publish what happened (a provider failed, a breaker opened,
a budget threshold was crossed) to an ``EventBus``. Callers either
subscribe a callback or drain the buffered events when convenient.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from itertools import count
from threading import Lock
from typing import Any, Callable, Iterable, Optional


logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Everything the orchestration core reports."""
    MODEL_SELECTED = "model_selected"
    PROVIDER_SKIPPED = "provider_skipped"
    PROVIDER_FAILURE = "provider_failure"
    PROVIDER_SUCCESS = "provider_success"
    ALL_PROVIDERS_FAILED = "all_providers_failed"
    CIRCUIT_OPENED = "circuit_opened"
    CIRCUIT_CLOSED = "circuit_closed"
    COST_TRACKED = "cost_tracked"
    BUDGET_ALERT = "budget_alert"
    PERIOD_RESET = "period_reset"
    DAY_ROLLED = "day_rolled"
    SYNTHESIS_COMPLETE = "synthesis_complete"
    SYNTHESIS_FAILED = "synthesis_failed"
    HEALTH_REPORT = "health_report"


@dataclass(frozen=True)
class Event:
    """One published event."""
    type: EventType
    data: dict[str, Any]
    timestamp: float
    sequence: int


@dataclass(eq=False)
class Subscription:
    """Handle returned by ``EventBus.subscribe``."""
    callback: Callable[[Event], None]
    types: Optional[frozenset[EventType]] = None
    _bus: Optional["EventBus"] = field(default=None, repr=False)

    def matches(self, event: Event) -> bool:
        return self.types is None or event.type in self.types

    def unsubscribe(self) -> None:
        if self._bus is not None:
            self._bus.unsubscribe(self)
            self._bus = None


class EventBus:
    """
    In-process publish/subscribe with a bounded replay buffer.

    Example:
        ```python
        bus = EventBus()
        bus.subscribe(print, types=[EventType.BUDGET_ALERT])
        ...
        for event in bus.drain():
            handle(event)
        ```
    """

    def __init__(self, buffer_size: int = 1000, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = Lock()
        self._buffer: deque[Event] = deque(maxlen=buffer_size)
        self._subscriptions: list[Subscription] = []
        self._sequence = count(1)

    def subscribe(
        self,
        callback: Callable[[Event], None],
        types: Optional[Iterable[EventType]] = None,
    ) -> Subscription:
        """Call ``callback`` for every published event (optionally filtered)."""
        sub = Subscription(
            callback=callback,
            types=frozenset(types) if types is not None else None,
            _bus=self,
        )
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, event_type: EventType, **data: Any) -> Event:
        with self._lock:
            event = Event(
                type=event_type,
                data=data,
                timestamp=self._clock(),
                sequence=next(self._sequence),
            )
            self._buffer.append(event)
            subscribers = [s for s in self._subscriptions if s.matches(event)]

        for sub in subscribers:
            try:
                sub.callback(event)
            except Exception:
                logger.warning(
                    "Event subscriber failed for %s", event_type.value, exc_info=True
                )
        return event

    def drain(self, types: Optional[Iterable[EventType]] = None) -> list[Event]:
        """
        Return and remove buffered events.

        Args:
            types: Only drain these event types; others stay buffered.
        """
        wanted = frozenset(types) if types is not None else None
        with self._lock:
            if wanted is None:
                events = list(self._buffer)
                self._buffer.clear()
                return events
            events = [e for e in self._buffer if e.type in wanted]
            kept = [e for e in self._buffer if e.type not in wanted]
            self._buffer.clear()
            self._buffer.extend(kept)
            return events

    def peek(self) -> list[Event]:
        with self._lock:
            return list(self._buffer)
