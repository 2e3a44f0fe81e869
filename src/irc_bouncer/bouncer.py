"""Process wiring for the bouncer.

Builds the shared bus and routing table, then runs one task per IRC
network and the delivery listener. The tasks only share the bus and the
read-only routing table.
"""

from __future__ import annotations

import asyncio
import logging

from irc_bouncer.bus import MessageBus
from irc_bouncer.config import BouncerConfig, Settings
from irc_bouncer.connection import ConnectionHandle, IRCConnection
from irc_bouncer.delivery import DeliveryAdapter, DeliveryClient
from irc_bouncer.relay import RelayEventHandler
from irc_bouncer.routing import RoutingTable
from irc_bouncer.webhook import WebhookClient

logger = logging.getLogger(__name__)


class Bouncer:
    """Owns every task in the process.

    Attributes:
        bus: The shared message bus
        routing: The static channel map
        connections: One IRCConnection per configured network
        relay: Entry point for the platform gateway client
    """

    def __init__(
        self,
        config: BouncerConfig,
        settings: Settings | None = None,
        client: DeliveryClient | None = None,
    ) -> None:
        settings = settings or Settings()
        config.check_ceiling(settings.effective_ceiling)
        self.config = config
        self.bus = MessageBus(capacity=settings.bus_capacity)
        self.routing = RoutingTable.from_config(config)

        self._owns_client = client is None
        self.client: DeliveryClient = client or WebhookClient(
            avatar_url=settings.avatar_url
        )

        self.connections = [
            IRCConnection(
                ConnectionHandle.from_config(server),
                self.bus,
                ceiling=settings.effective_ceiling,
            )
            for server in config.servers
        ]
        self.adapter = DeliveryAdapter(
            self.bus,
            self.routing,
            self.client,
            config.discord_user_id,
            attempts=settings.delivery_attempts,
            retry_delay=settings.delivery_retry_delay,
        )
        self.relay = RelayEventHandler(
            self.bus, self.routing, config.discord_user_id, self.adapter
        )
        self._tasks: list[asyncio.Task[None]] = []
        self._tap_task: asyncio.Task[None] | None = None

    async def _run_connection(self, connection: IRCConnection) -> None:
        try:
            await connection.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Connection to %s failed", connection.address)

    async def _log_traffic(self) -> None:
        with self.bus.subscribe() as subscription:
            async for message in subscription:
                logger.debug("%s", message)

    def start(self) -> None:
        """Spawn one task per network, plus a bus tap at DEBUG level."""
        for connection in self.connections:
            task = asyncio.create_task(
                self._run_connection(connection), name=f"irc-{connection.address}"
            )
            self._tasks.append(task)
        if logger.isEnabledFor(logging.DEBUG):
            self._tap_task = asyncio.create_task(self._log_traffic())
        logger.info("Started %d IRC connection(s)", len(self._tasks))

    async def wait(self) -> None:
        """Wait until every connection has closed."""
        if self._tasks:
            await asyncio.gather(*self._tasks)
        logger.warning("All IRC connections closed")

    async def stop(self) -> None:
        """Cancel every task and release the webhook client."""
        tasks = list(self._tasks)
        for extra in (self._tap_task, self.relay.listener_task):
            if extra is not None:
                tasks.append(extra)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        if self._owns_client and isinstance(self.client, WebhookClient):
            await self.client.aclose()


async def run_bouncer(config: BouncerConfig, settings: Settings | None = None) -> int:
    """Run the bouncer until every IRC connection has closed.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    bouncer = Bouncer(config, settings)
    try:
        bouncer.start()
        bouncer.relay.on_ready()
        await bouncer.wait()
        return 0
    except asyncio.CancelledError:
        logger.info("Bouncer cancelled")
        return 0
    except Exception as e:
        logger.exception("Bouncer failed with unexpected error: %s", e)
        return 1
    finally:
        await bouncer.stop()
