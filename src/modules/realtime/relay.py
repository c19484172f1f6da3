"""Outbox relay: delivers committed domain events to the event bus.

Rows are claimed in commit order with ``SELECT ... FOR UPDATE SKIP
LOCKED`` so concurrent relays (post-commit hook and the beat task) never
deliver the same row twice at the same time.  A row whose handler raises
is marked FAILED and retried on a later flush until ``max_retries``.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from django.db import transaction

from modules.core.models import OutboxEvent
from shared.domain.events import DomainEvent, IEventBus
from shared.infrastructure.bus import event_bus

logger = structlog.get_logger(__name__)

MAX_RETRIES = 5
BATCH_SIZE = 100


@dataclass
class RelayStats:
    published: int = 0
    failed: int = 0


class OutboxRelay:
    def __init__(
        self,
        bus: IEventBus,
        batch_size: int = BATCH_SIZE,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        self._bus = bus
        self._batch_size = batch_size
        self._max_retries = max_retries

    def flush(self) -> RelayStats:
        """Deliver every deliverable row once."""
        stats = RelayStats()
        seen: set = set()
        while True:
            with transaction.atomic():
                rows = list(
                    OutboxEvent.objects.deliverable(self._max_retries)
                    .exclude(id__in=seen)
                    .select_for_update(skip_locked=True)[: self._batch_size]
                )
                for row in rows:
                    seen.add(row.id)
                    self._deliver(row, stats)
            if len(rows) < self._batch_size:
                break
        if stats.published or stats.failed:
            logger.info("outbox.flushed", published=stats.published, failed=stats.failed)
        return stats

    def _deliver(self, row: OutboxEvent, stats: RelayStats) -> None:
        log = logger.bind(outbox_id=str(row.id), event_type=row.event_type)
        try:
            event = DomainEvent.from_payload(row.event_type, row.payload)
            self._bus.publish(event)
        except Exception as exc:  # noqa: BLE001 - recorded on the row for retry
            log.exception("outbox.delivery_failed")
            row.mark_failed(str(exc))
            stats.failed += 1
            return
        row.mark_delivered()
        stats.published += 1


outbox_relay = OutboxRelay(bus=event_bus)
