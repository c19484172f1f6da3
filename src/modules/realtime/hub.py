"""Topic membership and fan-out for one gateway process.

Each connection owns a bounded outbound queue.  A connection that falls
so far behind that its queue fills up is kicked (queue replaced by the
close sentinel); the client reconnects and resyncs over REST, which is
cheaper than holding an unbounded backlog for it.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, Optional, Set

import structlog

from shared.realtime.protocol import ChannelMessage

logger = structlog.get_logger(__name__)

CLOSE_SENTINEL = None


class Subscriber:
    """One client connection as seen by the hub."""

    def __init__(self, subscriber_id: str, user_id: Optional[str], queue_size: int) -> None:
        self.id = subscriber_id
        self.user_id = user_id
        self.topics: Set[str] = set()
        self.queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=queue_size)
        self.kicked = False

    def offer(self, frame: str) -> bool:
        """Queue *frame* without blocking; ``False`` means the subscriber was kicked."""
        if self.kicked:
            return False
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            self.kick()
            return False
        return True

    def kick(self) -> None:
        self.kicked = True
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(CLOSE_SENTINEL)


class TopicHub:
    def __init__(self) -> None:
        self._topics: Dict[str, Set[Subscriber]] = defaultdict(set)
        self._subscribers: Dict[str, Subscriber] = {}

    @property
    def connection_count(self) -> int:
        return len(self._subscribers)

    def register(self, subscriber: Subscriber) -> None:
        self._subscribers[subscriber.id] = subscriber

    def unregister(self, subscriber: Subscriber) -> None:
        for topic in list(subscriber.topics):
            self.leave(subscriber, topic)
        self._subscribers.pop(subscriber.id, None)

    def join(self, subscriber: Subscriber, topic: str) -> None:
        """Idempotent: joining twice still delivers each message once."""
        self._topics[topic].add(subscriber)
        subscriber.topics.add(topic)

    def leave(self, subscriber: Subscriber, topic: str) -> None:
        members = self._topics.get(topic)
        if members is not None:
            members.discard(subscriber)
            if not members:
                del self._topics[topic]
        subscriber.topics.discard(topic)

    def members(self, topic: str) -> Set[Subscriber]:
        return set(self._topics.get(topic, ()))

    def dispatch(self, message: ChannelMessage) -> int:
        """Fan *message* out to the topic's members; returns how many got it."""
        members = self._topics.get(message.topic)
        if not members:
            return 0
        frame = message.to_json()
        delivered = 0
        for subscriber in list(members):
            if subscriber.offer(frame):
                delivered += 1
            else:
                logger.warning(
                    "realtime.subscriber_kicked",
                    subscriber_id=subscriber.id,
                    user_id=subscriber.user_id,
                    topic=message.topic,
                )
        return delivered
