from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from typing import Any

from .types import ControllerEvent
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

EventListener = Callable[[ControllerEvent], None]


class EventLog:
    def __init__(self, *, max_events: int = 1000) -> None:
        self._lock = threading.RLock()
        self._events: deque[ControllerEvent] = deque(maxlen=max_events)
        self._listeners: list[EventListener] = []
        self._next_id = 1

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def add_event(self, event_type: str, payload: dict[str, Any] | None = None) -> ControllerEvent:
        with self._lock:
            event = ControllerEvent(
                id=self._next_id,
                type=event_type,
                created_at=utc_now_iso(),
                payload=dict(payload or {}),
            )
            self._next_id += 1
            self._events.append(event)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed event_type=%s", event_type)
        return event

    def list_events(self, *, after_id: int = 0, limit: int = 200) -> list[ControllerEvent]:
        with self._lock:
            matching = [event for event in self._events if event.id > after_id]
        return matching[:limit]
