"""Domain events for the Orders bounded context.

``affects_list`` marks the changes an order list renders (status and
payment status); the repository folds it into the snapshot event so the
list topics are pinged only when needed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Raised when checkout creates a Payment Pending order."""

    affects_list: ClassVar[bool] = True

    buyer_id: str = ""
    seller_id: str = ""


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Raised for every accepted status transition."""

    affects_list: ClassVar[bool] = True

    old_status: str = ""
    new_status: str = ""
    note: str = ""


@dataclass(frozen=True)
class OrderPaymentStatusChanged(DomainEvent):
    affects_list: ClassVar[bool] = True

    old_status: str = ""
    new_status: str = ""


@dataclass(frozen=True)
class OrderCarrierUpdated(DomainEvent):
    """Raised when carrier metadata (AWB, courier, dates) changes."""

    affects_list: ClassVar[bool] = False

    awb_code: str = ""
    courier_name: str = ""


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    affects_list: ClassVar[bool] = True

    reason: str = ""


@dataclass(frozen=True)
class OrderSnapshotChanged(DomainEvent):
    """Full snapshot of the order as committed, fanned out to subscribers."""

    affects_list: ClassVar[bool] = False

    buyer_id: str = ""
    seller_id: str = ""
    version: int = 0
    list_changed: bool = False
    snapshot: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OrderTrackingSyncChanged(DomainEvent):
    """Raised when a carrier sync starts or stops failing for the order."""

    affects_list: ClassVar[bool] = False

    failed: bool = False
