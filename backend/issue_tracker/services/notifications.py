from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

logger = logging.getLogger(__name__)


def issues_topic(project_id: str) -> str:
    return f"/topic/projects/{project_id}/issues"


def deleted_topic(project_id: str) -> str:
    return f"/topic/projects/{project_id}/issues/deleted"


def project_topics(project_id: str) -> tuple[str, str]:
    return issues_topic(project_id), deleted_topic(project_id)


class Broadcaster(Protocol):
    def publish(self, topic: str, payload: Any) -> None:
        ...


@dataclass(eq=False)
class Subscription:
    topics: frozenset[str]
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)

    def deliver(self, topic: str, payload: Any) -> None:
        message = {"topic": topic, "payload": payload}
        self.loop.call_soon_threadsafe(self.queue.put_nowait, message)


class TopicBroker:
    """In-process publish/subscribe hub.

    ``publish`` is called from worker threads that run the synchronous
    endpoints; subscribers live on the event loop serving their WebSocket.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, set[Subscription]] = {}

    def subscribe(self, topics: Iterable[str], loop: asyncio.AbstractEventLoop | None = None) -> Subscription:
        subscription = Subscription(
            topics=frozenset(topics),
            loop=loop or asyncio.get_running_loop(),
        )
        with self._lock:
            for topic in subscription.topics:
                self._subscriptions.setdefault(topic, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            for topic in subscription.topics:
                subscribers = self._subscriptions.get(topic)
                if not subscribers:
                    continue
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscriptions[topic]

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(topic, ()))

    def publish(self, topic: str, payload: Any) -> None:
        with self._lock:
            subscribers = list(self._subscriptions.get(topic, ()))
        for subscription in subscribers:
            try:
                subscription.deliver(topic, payload)
            except RuntimeError as exc:
                # Event loop of the subscriber is already closed.
                logger.warning("Dropping %s event for stale subscriber: %s", topic, exc)
                self.unsubscribe(subscription)


broker = TopicBroker()


def get_broadcaster() -> Broadcaster:
    return broker
