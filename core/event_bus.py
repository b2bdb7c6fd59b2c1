# event_bus.py - Pub/sub bus for story progression events
import threading
import queue
import time
import json
import logging
from typing import Generator, Optional, Dict, Any, Iterable
from collections import deque

logger = logging.getLogger(__name__)


class EventBus:
    """Thread-safe pub/sub bus. Late subscribers can replay recent events."""

    def __init__(self, replay_size: int = 50, queue_size: int = 100, keepalive: float = 30.0):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, queue.Queue] = {}
        self._replay_buffer: deque = deque(maxlen=replay_size)
        self._subscriber_counter = 0
        self._queue_size = queue_size
        self._keepalive = keepalive
        logger.info(f"EventBus initialized (replay_size={replay_size})")

    def publish(self, event_type: str, data: Optional[Dict[str, Any]] = None):
        """Publish an event to every subscriber. Never raises into the caller."""
        event = {
            "type": event_type,
            "data": data or {},
            "timestamp": time.time()
        }

        with self._lock:
            self._replay_buffer.append(event)
            for sub_id, q in self._subscribers.items():
                try:
                    q.put_nowait(event)
                except queue.Full:
                    logger.warning(f"Subscriber {sub_id} queue full, dropping {event_type}")

        logger.debug(f"Published: {event_type}")

    def subscribe(self, replay: bool = True,
                  event_types: Optional[Iterable[str]] = None) -> Generator[Dict[str, Any], None, None]:
        """Yield events as they arrive, with a keepalive when idle.

        Args:
            replay: If True, replay buffered events before the live stream
            event_types: Only deliver these types (keepalives always pass)
        """
        wanted = set(event_types) if event_types else None
        q = queue.Queue(maxsize=self._queue_size)

        with self._lock:
            self._subscriber_counter += 1
            sub_id = f"sub_{self._subscriber_counter}"
            self._subscribers[sub_id] = q

            if replay:
                for event in self._replay_buffer:
                    try:
                        q.put_nowait(event)
                    except queue.Full:
                        break

        logger.info(f"New subscriber: {sub_id} (replay={replay})")

        try:
            while True:
                try:
                    event = q.get(timeout=self._keepalive)
                except queue.Empty:
                    yield {"type": "keepalive", "timestamp": time.time()}
                    continue
                if wanted is None or event["type"] in wanted:
                    yield event
        finally:
            with self._lock:
                self._subscribers.pop(sub_id, None)
            logger.info(f"Subscriber disconnected: {sub_id}")

    def recent(self, limit: Optional[int] = None) -> list:
        """Snapshot of the replay buffer, oldest first."""
        with self._lock:
            events = list(self._replay_buffer)
        return events[-limit:] if limit else events

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


def to_sse(event: Dict[str, Any]) -> str:
    """Format one event as a Server-Sent Events frame."""
    return f"data: {json.dumps(event)}\n\n"


# Singleton instance
_bus: Optional[EventBus] = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get or create the singleton event bus."""
    global _bus
    with _bus_lock:
        if _bus is None:
            _bus = EventBus()
        return _bus


def publish(event_type: str, data: Optional[Dict[str, Any]] = None):
    """Convenience function to publish to the global bus."""
    get_event_bus().publish(event_type, data)


# Event type constants
class Events:
    STORY_STARTED = "story_started"
    STORY_CHOICE_MADE = "story_choice_made"
    STORY_COMPLETED = "story_completed"
    STORY_RATED = "story_rated"
