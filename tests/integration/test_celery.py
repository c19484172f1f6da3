"""Integration tests for the Celery configuration and scheduled tasks."""

from datetime import timedelta

import pytest
from freezegun import freeze_time

pytestmark = pytest.mark.integration


class TestCeleryConfig:
    """Verifies Celery loads through Django."""

    def test_celery_app_is_importable(self):
        from config.celery import app

        assert app.main == "marketplace"

    def test_celery_app_exported_from_init(self):
        from config import celery_app

        assert celery_app.main == "marketplace"

    def test_celery_broker_url_configured(self, settings):
        assert settings.CELERY_BROKER_URL is not None
        assert "redis" in settings.CELERY_BROKER_URL

    def test_celery_serializer_is_json(self, settings):
        assert settings.CELERY_TASK_SERIALIZER == "json"
        assert settings.CELERY_RESULT_SERIALIZER == "json"
        assert settings.CELERY_ACCEPT_CONTENT == ["json"]

    def test_celery_timezone_matches_django(self, settings):
        assert settings.CELERY_TIMEZONE == settings.TIME_ZONE


class TestBeatSchedule:
    def test_scheduled_tasks(self, settings):
        tasks = {entry["task"] for entry in settings.CELERY_BEAT_SCHEDULE.values()}
        assert tasks == {
            "orders.expire_pending_orders",
            "orders.sync_active_shipments",
            "realtime.relay_outbox",
        }

    def test_scheduled_task_names_are_registered(self, settings):
        from config.celery import app
        from modules.orders import tasks as order_tasks  # noqa: F401
        from modules.realtime import tasks as realtime_tasks  # noqa: F401

        for entry in settings.CELERY_BEAT_SCHEDULE.values():
            assert entry["task"] in app.tasks

    def test_relay_runs_every_thirty_seconds(self, settings):
        schedule = settings.CELERY_BEAT_SCHEDULE["relay-outbox"]["schedule"]
        assert schedule == timedelta(seconds=30)


class TestEagerExecution:
    def test_expire_task_runs_eagerly(self, pending_order):
        from modules.orders.tasks import expire_pending_orders

        with freeze_time(pending_order.created_at + timedelta(hours=1)):
            result = expire_pending_orders.apply()

        assert result.successful()
        assert result.result == {"expired": [str(pending_order.id)]}

    def test_sync_task_with_nothing_to_track(self):
        from modules.orders.tasks import sync_active_shipments

        result = sync_active_shipments.apply()

        assert result.result == {"synced": 0, "failed": 0}
