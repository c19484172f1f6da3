"""Liveness probe for the API, its stores and the push fan-out."""

import time
from typing import Any, Callable, Dict

import structlog
from django.core.cache import cache
from django.db import connections
from django.http import HttpRequest, JsonResponse
from django.utils import timezone

from modules.core.models import OutboxEvent
from modules.realtime.broadcaster import get_broadcaster
from modules.realtime.relay import MAX_RETRIES

logger = structlog.get_logger()


def _timed(probe: Callable[[], Any]) -> Dict[str, Any]:
    start = time.monotonic()
    extra = probe()
    return {
        "status": "up",
        "response_time_ms": round((time.monotonic() - start) * 1000, 2),
        **(extra or {}),
    }


def _ping_database() -> None:
    conn = connections["default"]
    conn.ensure_connection()
    with conn.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()


def _ping_cache() -> None:
    cache.set("_health_check", "ok", 10)
    if cache.get("_health_check") != "ok":
        raise ConnectionError("Cache read failed")


def _ping_realtime() -> None:
    if not get_broadcaster().ping():
        raise ConnectionError("Broadcaster unreachable")


def _outbox_backlog() -> Dict[str, int]:
    return {"backlog": OutboxEvent.objects.deliverable(MAX_RETRIES).count()}


def health_check(request: HttpRequest) -> JsonResponse:
    services: Dict[str, Dict[str, Any]] = {}
    overall_healthy = True

    for name, probe in (("database", _ping_database), ("cache", _ping_cache)):
        try:
            services[name] = _timed(probe)
        except Exception:
            services[name] = {"status": "down"}
            overall_healthy = False
            logger.error("health_check_failure", service=name)

    # Clients fall back to pull refresh, so a broken fan-out only degrades.
    for name, probe in (("realtime", _ping_realtime), ("outbox", _outbox_backlog)):
        try:
            services[name] = _timed(probe)
        except Exception:
            services[name] = {"status": "degraded"}
            logger.warning("health_check_degraded", service=name)

    status_code = 200 if overall_healthy else 503
    logger.info(
        "health_check_completed", status="healthy" if overall_healthy else "unhealthy"
    )

    return JsonResponse(
        {
            "status": "healthy" if overall_healthy else "unhealthy",
            "timestamp": timezone.now().isoformat(),
            "services": services,
        },
        status=status_code,
    )
