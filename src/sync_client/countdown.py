"""Advisory payment countdown for Payment Pending orders.

The server sweep is what actually cancels an expired order; reaching zero
here only makes the view refresh.  While time remains the buyer is always
offered both "Cancel" and "Complete Payment".
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

PAYMENT_PENDING = "Payment Pending"
ACTIONS = ("cancel", "complete_payment")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentCountdown:
    def __init__(
        self,
        expires_at: datetime,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.expires_at = expires_at
        self._clock = clock

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Dict[str, Any],
        clock: Callable[[], datetime] = _utcnow,
    ) -> Optional[PaymentCountdown]:
        """Countdown for an unpaid order, ``None`` for anything else."""
        if snapshot.get("status") != PAYMENT_PENDING or not snapshot.get("expiresAt"):
            return None
        return cls(datetime.fromisoformat(snapshot["expiresAt"]), clock)

    def remaining(self) -> timedelta:
        return max(self.expires_at - self._clock(), timedelta(0))

    @property
    def expired(self) -> bool:
        return self.remaining() == timedelta(0)

    def actions(self) -> Tuple[str, ...]:
        return () if self.expired else ACTIONS

    def label(self) -> str:
        seconds = int(self.remaining().total_seconds())
        return f"{seconds // 60:02d}:{seconds % 60:02d}"

    async def run(
        self,
        on_expired: Callable[[], Awaitable[None]],
        on_tick: Optional[Callable[[timedelta], None]] = None,
        interval: float = 1.0,
    ) -> None:
        while not self.expired:
            remaining = self.remaining()
            if on_tick is not None:
                on_tick(remaining)
            await asyncio.sleep(min(interval, remaining.total_seconds()))
        await on_expired()
