"""Fixtures for the client library: in-memory transport and REST client."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from shared.realtime.protocol import ChannelMessage, ClientCommand
from sync_client.exceptions import ChannelDisconnected
from sync_client.transport import PushTransport


class FakeTransport(PushTransport):
    """Refuses the first ``failures`` connects (every one when ``None``)."""

    def __init__(self, failures: Optional[int] = 0) -> None:
        self.failures = failures
        self.connects = 0
        self.sent: List[ClientCommand] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def connect(self) -> None:
        self.connects += 1
        if self.failures is None or self.connects <= self.failures:
            raise ChannelDisconnected("connection refused")
        self.closed = False

    async def send(self, command: ClientCommand) -> None:
        self.sent.append(command)

    async def receive(self) -> ChannelMessage:
        item = await self._inbox.get()
        if item is None:
            raise ChannelDisconnected("connection dropped")
        return item

    async def close(self) -> None:
        self.closed = True

    def push(self, message: ChannelMessage) -> None:
        self._inbox.put_nowait(message)

    def drop(self) -> None:
        self._inbox.put_nowait(None)


class FakeApi:
    """Serves canned bodies; ``hold()`` parks calls until ``release()``."""

    def __init__(self) -> None:
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.sync_bodies: List[Any] = []
        self.count = 0
        self.list_calls: List[tuple] = []
        self.errors: Dict[str, Exception] = {}
        self._holding = False
        self._gates: List[asyncio.Event] = []

    def hold(self) -> None:
        self._holding = True

    def release(self, index: int) -> None:
        self._gates[index].set()

    async def _answer(self, name: str, body: Any) -> Any:
        if name in self.errors:
            raise self.errors[name]
        if self._holding:
            gate = asyncio.Event()
            self._gates.append(gate)
            await gate.wait()
        return body

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        return await self._answer("get_order", dict(self.orders[order_id]))

    async def sync_tracking(self, order_id: str) -> Dict[str, Any]:
        if self.sync_bodies and self.sync_bodies[0] == "hang":
            await asyncio.Event().wait()
        body = self.sync_bodies.pop(0) if self.sync_bodies else {}
        return await self._answer("sync_tracking", body)

    async def verify_payment(self, order_id: str, payment_id: str, signature: str) -> Dict[str, Any]:
        return await self._answer("verify_payment", dict(self.orders[order_id]))

    async def cancel_pending(self, order_id: str) -> Dict[str, Any]:
        return await self._answer("cancel_pending", dict(self.orders[order_id]))

    async def can_retry_payment(self, order_id: str) -> Dict[str, Any]:
        return await self._answer("can_retry_payment", {"canRetry": False, "message": "closed"})

    async def cart_count(self) -> int:
        return await self._answer("cart_count", self.count)

    async def list_orders(self, role: str = "buyer", page: int = 1) -> Dict[str, Any]:
        self.list_calls.append((role, page))
        body = {
            "count": 1,
            "results": [{"orderId": "abc"}],
            "pagination": {"currentPage": page, "totalPages": 2, "totalOrders": 1},
        }
        return await self._answer("list_orders", body)


async def _settle(condition, rounds: int = 200) -> None:
    """Let the loop run until *condition* holds."""
    for _ in range(rounds):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture()
def make_transport():
    return FakeTransport


@pytest.fixture()
def fake_api():
    return FakeApi()


@pytest.fixture()
def settle():
    return _settle
