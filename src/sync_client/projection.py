"""Client Projection Cache.

Holds the order snapshots and list pages the mounted views render.  A
snapshot always replaces the cached one wholesale (never merged), so
applying the same push twice leaves the cache as applying it once.  A
snapshot older than the cached ``version`` is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import structlog

logger = structlog.get_logger(__name__)

Snapshot = Dict[str, Any]
OrderListener = Callable[[str], None]


class RequestGenerations:
    """Drops responses that lost the race to a newer request.

    ``begin`` hands out increasing generations per resource key; a
    response may be applied only if no newer generation for the same key
    has been applied already.
    """

    def __init__(self) -> None:
        self._issued: Dict[str, int] = {}
        self._applied: Dict[str, int] = {}
        self._outstanding: Dict[str, Set[int]] = {}

    def begin(self, key: str) -> int:
        generation = self._issued.get(key, 0) + 1
        self._issued[key] = generation
        self._outstanding.setdefault(key, set()).add(generation)
        return generation

    def abandon(self, key: str, generation: int) -> None:
        """The request failed or was cancelled; nothing to apply."""
        self._outstanding.get(key, set()).discard(generation)

    def complete(self, key: str, generation: int) -> bool:
        self.abandon(key, generation)
        if generation <= self._applied.get(key, 0):
            logger.debug("projection.stale_response_dropped", key=key, generation=generation)
            return False
        self._applied[key] = generation
        return True

    def in_flight(self, key: str) -> bool:
        return bool(self._outstanding.get(key))


@dataclass
class ListPage:
    rows: List[Snapshot] = field(default_factory=list)
    page: int = 1
    total_pages: int = 1
    total: int = 0
    stale: bool = False


class ProjectionCache:
    def __init__(self) -> None:
        self._orders: Dict[str, Snapshot] = {}
        self._lists: Dict[Tuple[str, str], ListPage] = {}
        self._listeners: List[OrderListener] = []

    def add_listener(self, listener: OrderListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: OrderListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Orders

    def get(self, order_id: str) -> Optional[Snapshot]:
        snapshot = self._orders.get(str(order_id))
        return dict(snapshot) if snapshot is not None else None

    def apply_snapshot(self, snapshot: Snapshot) -> bool:
        """Replace the cached order; returns whether anything changed."""
        order_id = str(snapshot["orderId"])
        current = self._orders.get(order_id)
        if current is not None and snapshot.get("version", 0) < current.get("version", 0):
            logger.info(
                "projection.stale_snapshot_ignored",
                order_id=order_id,
                cached_version=current.get("version"),
                incoming_version=snapshot.get("version"),
            )
            return False
        if current == snapshot:
            return False
        self._orders[order_id] = dict(snapshot)
        for listener in list(self._listeners):
            listener(order_id)
        return True

    # Lists

    def store_list(self, user_id: str, role: str, body: Dict[str, Any]) -> ListPage:
        pagination = body.get("pagination", {})
        page = ListPage(
            rows=list(body.get("results", [])),
            page=int(pagination.get("currentPage", 1)),
            total_pages=int(pagination.get("totalPages", 1)),
            total=int(pagination.get("totalOrders", body.get("count", 0))),
        )
        self._lists[(str(user_id), role)] = page
        return page

    def list_page(self, user_id: str, role: str) -> Optional[ListPage]:
        return self._lists.get((str(user_id), role))

    def invalidate_list(self, user_id: str, role: str) -> None:
        page = self._lists.get((str(user_id), role))
        if page is not None:
            page.stale = True
