"""Broadcasters hand channel messages to the push gateway.

- ``RedisBroadcaster``: publishes to a Redis pub/sub channel the gateway
  process subscribes to (production, multi-process).
- ``InMemoryBroadcaster``: keeps messages in process (dev/test) and
  forwards them to any local listener.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, List

import redis
import structlog
from django.conf import settings

from shared.realtime.protocol import ChannelMessage

logger = structlog.get_logger(__name__)


class Broadcaster(ABC):
    @abstractmethod
    def publish(self, message: ChannelMessage) -> None:
        """Hand *message* to every gateway instance."""

    @abstractmethod
    def ping(self) -> bool:
        """Whether the transport is reachable."""


class InMemoryBroadcaster(Broadcaster):
    """Process-local broadcaster; records everything it publishes."""

    def __init__(self) -> None:
        self.messages: List[ChannelMessage] = []
        self._listeners: List[Callable[[ChannelMessage], None]] = []

    def add_listener(self, listener: Callable[[ChannelMessage], None]) -> None:
        self._listeners.append(listener)

    def publish(self, message: ChannelMessage) -> None:
        self.messages.append(message)
        for listener in self._listeners:
            listener(message)

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        self.messages.clear()
        self._listeners.clear()


class RedisBroadcaster(Broadcaster):
    def __init__(self, url: str, channel: str) -> None:
        self._client = redis.Redis.from_url(url)
        self._channel = channel

    def publish(self, message: ChannelMessage) -> None:
        receivers = self._client.publish(self._channel, message.to_json())
        logger.debug(
            "realtime.published",
            topic=message.topic,
            event=message.event,
            receivers=receivers,
        )

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as exc:
            logger.warning("realtime.broadcaster_unreachable", error=str(exc))
            return False


_broadcaster: Broadcaster | None = None


def get_broadcaster() -> Broadcaster:
    """Return the configured broadcaster (singleton)."""
    global _broadcaster
    if _broadcaster is None:
        name = settings.REALTIME_BROADCASTER
        if name == "memory":
            _broadcaster = InMemoryBroadcaster()
        elif name == "redis":
            _broadcaster = RedisBroadcaster(settings.REDIS_URL, settings.REALTIME_CHANNEL)
        else:
            raise ValueError(f"Unknown realtime broadcaster: {name}")
    return _broadcaster


def set_broadcaster(broadcaster: Broadcaster) -> None:
    global _broadcaster
    _broadcaster = broadcaster


def reset_broadcaster() -> None:
    global _broadcaster
    _broadcaster = None
