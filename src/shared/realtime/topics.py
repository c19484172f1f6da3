"""Subscription topic names.

A topic is only a routing key; joining or leaving one never touches
order state.

- ``order:<orderId>``: full snapshots of one order.
- ``orderList:<userId>:<role>``: invalidation pings for a user's list,
  ``role`` being ``buyer`` or ``seller``.
- ``user:<userId>``: per-user signals such as the cart count.
"""

from __future__ import annotations

from typing import Any

ROLES = ("buyer", "seller")


class InvalidTopic(ValueError):
    """Arguments do not name a valid topic."""


def _part(value: Any, what: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text or ":" in text:
        raise InvalidTopic(f"Invalid {what}: {value!r}")
    return text


def order_topic(order_id: Any) -> str:
    return f"order:{_part(order_id, 'order id')}"


def order_list_topic(user_id: Any, role: str) -> str:
    if role not in ROLES:
        raise InvalidTopic(f"Role must be one of {', '.join(ROLES)}; got {role!r}")
    return f"orderList:{_part(user_id, 'user id')}:{role}"


def user_topic(user_id: Any) -> str:
    return f"user:{_part(user_id, 'user id')}"


def topic_owner(topic: str) -> tuple[str, str]:
    """Split a topic into ``(kind, subject)``; subject is the order or user id."""
    kind, _, rest = topic.partition(":")
    if kind == "orderList":
        return kind, rest.split(":", 1)[0]
    return kind, rest
