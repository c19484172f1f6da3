"""JSON frames exchanged over the push connection.

Client → server::

    {"event": "joinOrderRoom", "args": ["<orderId>"]}

Server → client::

    {"event": "orderUpdated", "topic": "order:<orderId>", "data": {...}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Server → client
ORDER_UPDATED = "orderUpdated"
ORDERS_LIST_UPDATED = "ordersListUpdated"
CART_UPDATED = "cartUpdated"
ERROR = "error"

# Client → server
JOIN_ORDER_ROOM = "joinOrderRoom"
LEAVE_ORDER_ROOM = "leaveOrderRoom"
JOIN_ORDERS_LIST_ROOM = "joinOrdersListRoom"
LEAVE_ORDERS_LIST_ROOM = "leaveOrdersListRoom"
JOIN_USER_ROOM = "joinUserRoom"
LEAVE_USER_ROOM = "leaveUserRoom"


class ProtocolError(ValueError):
    """A frame is not valid JSON or misses required keys."""


def _loads(raw: str | bytes) -> Dict[str, Any]:
    try:
        body = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Frame is not valid JSON: {exc}") from exc
    if not isinstance(body, dict) or not isinstance(body.get("event"), str):
        raise ProtocolError("Frame must be an object with an 'event' string.")
    return body


@dataclass(frozen=True)
class ChannelMessage:
    """Server → client push message."""

    event: str
    topic: str
    data: Optional[Dict[str, Any]] = None

    def to_json(self) -> str:
        body: Dict[str, Any] = {"event": self.event, "topic": self.topic}
        if self.data is not None:
            body["data"] = self.data
        return json.dumps(body, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str | bytes) -> ChannelMessage:
        body = _loads(raw)
        return cls(event=body["event"], topic=str(body.get("topic", "")), data=body.get("data"))


@dataclass(frozen=True)
class ClientCommand:
    """Client → server membership command."""

    event: str
    args: List[Any] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps({"event": self.event, "args": list(self.args)}, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str | bytes) -> ClientCommand:
        body = _loads(raw)
        args = body.get("args", [])
        if not isinstance(args, list):
            raise ProtocolError("'args' must be a list.")
        return cls(event=body["event"], args=args)
