"""Topic-based real-time fan-out keyed by chat id."""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, Protocol, Set

import structlog

logger = structlog.get_logger()

NEW_MESSAGE = "new-message"
MESSAGES_SEEN = "messages-seen"
MESSAGE_DELETED = "message-deleted"
CHAT_DELETED = "chat-deleted"


class Connection(Protocol):
    """Anything that can receive a JSON event, e.g. a FastAPI ``WebSocket``."""

    async def send_json(self, data: Any) -> None:
        ...


class RealtimeNotifier(ABC):
    """Publish/subscribe interface; implementations are interchangeable."""

    @abstractmethod
    async def subscribe(self, connection: Connection, chat_id: str) -> None:
        pass

    @abstractmethod
    async def unsubscribe(self, connection: Connection, chat_id: str) -> None:
        pass

    @abstractmethod
    async def unsubscribe_all(self, connection: Connection) -> None:
        pass

    @abstractmethod
    async def publish(self, chat_id: str, event: str, payload: Dict[str, Any]) -> int:
        """Deliver an event to current subscribers and return how many got it."""
        pass

    @abstractmethod
    def subscriber_count(self, chat_id: str) -> int:
        pass


class InMemoryNotifier(RealtimeNotifier):
    """In-process notifier for a single event loop.

    Events are not stored: a connection that subscribes after a publish never
    sees it. Publishes on one topic are serialized so each subscriber receives
    them in publish order.
    """

    def __init__(self) -> None:
        self._topics: Dict[str, Set[Connection]] = defaultdict(set)
        self._topic_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        # Publishers holding or waiting on a topic lock; the lock outlives the topic until zero.
        self._publishers: Dict[str, int] = defaultdict(int)

    async def subscribe(self, connection: Connection, chat_id: str) -> None:
        self._topics[chat_id].add(connection)
        logger.debug("topic_joined", chat_id=chat_id, subscribers=len(self._topics[chat_id]))

    async def unsubscribe(self, connection: Connection, chat_id: str) -> None:
        self._remove(connection, chat_id)
        logger.debug("topic_left", chat_id=chat_id)

    async def unsubscribe_all(self, connection: Connection) -> None:
        for chat_id in list(self._topics):
            self._remove(connection, chat_id)

    def _remove(self, connection: Connection, chat_id: str) -> None:
        members = self._topics.get(chat_id)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self._topics[chat_id]
            self._discard_lock(chat_id)

    def _discard_lock(self, chat_id: str) -> None:
        if chat_id not in self._topics and not self._publishers.get(chat_id):
            self._topic_locks.pop(chat_id, None)

    def subscriber_count(self, chat_id: str) -> int:
        return len(self._topics.get(chat_id, ()))

    async def publish(self, chat_id: str, event: str, payload: Dict[str, Any]) -> int:
        if not self._topics.get(chat_id):
            return 0

        envelope = {"event": event, "data": payload}
        delivered = 0
        dead = []
        self._publishers[chat_id] += 1
        try:
            async with self._topic_locks[chat_id]:
                # Snapshot: subscribers may change while we await sends.
                for connection in list(self._topics.get(chat_id, ())):
                    try:
                        await connection.send_json(envelope)
                        delivered += 1
                    except Exception as e:
                        logger.warning(
                            "realtime_delivery_failed",
                            chat_id=chat_id,
                            realtime_event=event,
                            error=str(e),
                        )
                        dead.append(connection)
        finally:
            self._publishers[chat_id] -= 1
            if not self._publishers[chat_id]:
                del self._publishers[chat_id]

        for connection in dead:
            await self.unsubscribe_all(connection)
        self._discard_lock(chat_id)

        logger.debug("realtime_published", chat_id=chat_id, realtime_event=event, delivered=delivered)
        return delivered


async def publish_best_effort(
    notifier: RealtimeNotifier, chat_id: str, event: str, payload: Dict[str, Any]
) -> None:
    """Publish without letting delivery problems reach the caller."""
    try:
        await notifier.publish(chat_id, event, payload)
    except Exception as e:
        logger.error("realtime_publish_failed", chat_id=chat_id, realtime_event=event, error=str(e))
