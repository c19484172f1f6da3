"""Run the WebSocket push gateway."""

import asyncio

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from modules.realtime.gateway import RealtimeGateway, TokenAuthorizer
from modules.realtime.hub import TopicHub


class Command(BaseCommand):
    help = "Serve real-time order, order-list and cart updates over WebSockets."

    def add_arguments(self, parser):
        parser.add_argument("--host", default=settings.REALTIME_GATEWAY_HOST)
        parser.add_argument("--port", type=int, default=settings.REALTIME_GATEWAY_PORT)

    def handle(self, *args, **options):
        if settings.REALTIME_BROADCASTER != "redis" or not settings.REDIS_URL:
            raise CommandError(
                "The gateway needs REALTIME_BROADCASTER=redis and REDIS_URL so it "
                "can receive messages published by the API and workers."
            )

        gateway = RealtimeGateway(
            hub=TopicHub(),
            queue_size=settings.REALTIME_CONNECTION_QUEUE_SIZE,
            authorizer=TokenAuthorizer() if settings.REALTIME_REQUIRE_AUTH else None,
        )
        self.stdout.write(
            self.style.SUCCESS(
                f"Realtime gateway on ws://{options['host']}:{options['port']}"
            )
        )
        try:
            asyncio.run(
                gateway.run(
                    options["host"],
                    options["port"],
                    settings.REDIS_URL,
                    settings.REALTIME_CHANNEL,
                )
            )
        except KeyboardInterrupt:
            self.stdout.write("Gateway stopped.")
