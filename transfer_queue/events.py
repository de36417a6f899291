"""
Named publish/subscribe used to fan out queue state changes
"""
import logging
import threading
from enum import Enum
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


class QueueEvent(str, Enum):
    STATE_CHANGED = 'state-changed'      # any operation or queue-status mutation
    OPERATION_DONE = 'operation-done'    # one operation reached a terminal state
    DRAIN_COMPLETE = 'drain-complete'    # queue returned to idle


class EventBus:
    """Ordered listener lists per event; one failing listener never blocks the rest"""

    def __init__(self, name="transfer-queue"):
        self.name = name
        self._listeners: Dict[QueueEvent, List[Callable]] = {event: [] for event in QueueEvent}
        self._lock = threading.Lock()

    def on(self, event, listener: Callable):
        """Subscribe `listener`; subscribing the same callable twice is a no-op"""
        event = QueueEvent(event)
        with self._lock:
            if listener not in self._listeners[event]:
                self._listeners[event].append(listener)

    def off(self, event, listener: Callable):
        event = QueueEvent(event)
        with self._lock:
            try:
                self._listeners[event].remove(listener)
            except ValueError:
                pass

    def listener_count(self, event) -> int:
        with self._lock:
            return len(self._listeners[QueueEvent(event)])

    def emit(self, event, *args):
        event = QueueEvent(event)
        with self._lock:
            listeners = list(self._listeners[event])

        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception(f"{self.name} listener error on '{event.value}'")
