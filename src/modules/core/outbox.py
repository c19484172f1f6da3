"""Helpers that persist aggregate domain events into the outbox.

Must be called inside the same ``transaction.atomic()`` block as the
aggregate write so the events commit (or roll back) with it.
"""

from __future__ import annotations

from typing import Any, List

import structlog
from django.db import transaction

from modules.core.models import OutboxEvent

logger = structlog.get_logger(__name__)


def record_outbox_events(entity: Any, topic: str) -> List[OutboxEvent]:
    """Drain *entity*'s collected domain events into ``OutboxEvent`` rows."""
    events = entity.domain_events if hasattr(entity, "domain_events") else []
    rows = [
        OutboxEvent.objects.create(
            event_type=event.event_name,
            aggregate_id=str(event.aggregate_id),
            payload=event.to_payload(),
            topic=topic,
        )
        for event in events
    ]
    if hasattr(entity, "clear_domain_events"):
        entity.clear_domain_events()
    if rows:
        transaction.on_commit(_flush_outbox)
    return rows


def _flush_outbox() -> None:
    from modules.realtime.relay import outbox_relay

    outbox_relay.flush()
