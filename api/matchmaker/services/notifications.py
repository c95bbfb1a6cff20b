from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

MATCH_FOUND = "MATCH_FOUND"
QUEUE_REMOVED = "QUEUE_REMOVED"
QUEUE_SIZE_CHANGED = "QUEUE_SIZE_CHANGED"
QUEUE_CONFIG_CHANGED = "QUEUE_CONFIG_CHANGED"
PAIRING_ENDED = "PAIRING_ENDED"

BROADCAST = "*"

MATCH_FOUND_MESSAGE = "Match found! You've been paired with someone special!"
QUEUE_REMOVED_MESSAGE = "Queue has been disabled by admin. You have been removed from the queue."


class Publisher(Protocol):
    def publish(self, target_user_id: str, event_type: str, payload: Any) -> None:
        ...


@dataclass
class PublishedEvent:
    target_user_id: str
    event_type: str
    payload: Any
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryPublisher:
    """In-process fan-out: records every event and forwards it to subscribers.

    Subscribers registered for ``BROADCAST`` receive every event. A subscriber
    that raises is dropped, like a stale socket.
    """

    def __init__(self) -> None:
        self.events: list[PublishedEvent] = []
        self.subscribers: dict[str, list[Callable[[PublishedEvent], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, user_id: str, callback: Callable[[PublishedEvent], None]) -> None:
        with self._lock:
            self.subscribers.setdefault(user_id, []).append(callback)

    def unsubscribe(self, user_id: str, callback: Callable[[PublishedEvent], None]) -> None:
        with self._lock:
            callbacks = self.subscribers.get(user_id)
            if not callbacks:
                return
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self.subscribers.pop(user_id, None)

    def publish(self, target_user_id: str, event_type: str, payload: Any) -> None:
        event = PublishedEvent(target_user_id=target_user_id, event_type=event_type, payload=payload)
        with self._lock:
            self.events.append(event)
            keys = {target_user_id, BROADCAST}
            if target_user_id == BROADCAST:
                keys = set(self.subscribers)
            targets = [(key, cb) for key in keys for cb in self.subscribers.get(key, [])]

        stale: list[tuple[str, Callable[[PublishedEvent], None]]] = []
        for key, callback in targets:
            try:
                callback(event)
            except Exception:
                logger.exception("[NOTIFY] subscriber for %s failed; dropping it", key)
                stale.append((key, callback))
        for key, callback in stale:
            self.unsubscribe(key, callback)

    def events_of(self, event_type: str) -> list[PublishedEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class LoggingPublisher:
    def publish(self, target_user_id: str, event_type: str, payload: Any) -> None:
        logger.info("[NOTIFY] %s -> %s payload=%s", event_type, target_user_id, payload)


def safe_publish(publisher: Publisher | None, target_user_id: str, event_type: str, payload: Any) -> bool:
    """Publish without ever raising; returns whether the sink accepted the event."""
    if publisher is None:
        return False
    try:
        publisher.publish(target_user_id, event_type, payload)
        return True
    except Exception:
        logger.exception("[NOTIFY] failed to publish %s to %s", event_type, target_user_id)
        return False
