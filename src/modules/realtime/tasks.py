"""Scheduled tasks for the realtime module."""

from celery import shared_task

from modules.realtime.relay import outbox_relay


@shared_task(name="realtime.relay_outbox")
def relay_outbox() -> dict:
    """Deliver outbox rows a post-commit flush missed or that failed."""
    stats = outbox_relay.flush()
    return {"published": stats.published, "failed": stats.failed}
