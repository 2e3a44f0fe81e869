"""Relay-platform event intake.

The platform gateway client calls into RelayEventHandler:
- on_message for every channel message it receives
- on_ready whenever its cache becomes ready (may fire repeatedly)
"""

from __future__ import annotations

import asyncio
import logging

from irc_bouncer.bus import MessageBus
from irc_bouncer.delivery import DeliveryAdapter
from irc_bouncer.models import BouncerMessage, MessageState, RelayEvent
from irc_bouncer.routing import RoutingTable

logger = logging.getLogger(__name__)


def flatten_event(event: RelayEvent) -> str:
    """Build the IRC text for a platform message.

    Replies are prefixed with ``<author>:`` so the IRC user is pinged, and
    attachment URLs are appended so uploads stay reachable.
    """
    content = ""
    if event.reply_to:
        content += f"{event.reply_to}:"
    content += event.content
    for url in event.attachments:
        content += f" {url}"
    return content


class RelayEventHandler:
    """Turns platform events into OUTGOING bus messages.

    Attributes:
        owner_id: Only this platform user's messages are relayed to IRC
    """

    def __init__(
        self,
        bus: MessageBus,
        routing: RoutingTable,
        owner_id: int,
        adapter: DeliveryAdapter,
    ) -> None:
        self._bus = bus
        self._routing = routing
        self.owner_id = owner_id
        self._adapter = adapter
        self._listener_started = False
        self._listener_task: asyncio.Task[None] | None = None

    @property
    def listener_task(self) -> asyncio.Task[None] | None:
        return self._listener_task

    def on_message(self, event: RelayEvent) -> BouncerMessage | None:
        """Publish the owner's message to the IRC channel it is bridged to.

        Returns:
            The published message, or None if it was ignored
        """
        if event.author_id != self.owner_id:
            return None

        logger.debug("Message from platform channel %s", event.channel_id)

        address = self._routing.network_for(event.channel_id)
        if address is None:
            return None

        message = BouncerMessage(
            network=address.server,
            channel=address.channel,
            user="",
            content=flatten_event(event),
            state=MessageState.OUTGOING,
        )
        if self._bus.publish(message) == 0:
            logger.warning("No IRC connection is listening for %s", address)
        return message

    def on_ready(self) -> bool:
        """Start the delivery adapter the first time this is called.

        The flag is tested and set with no await in between, so concurrent
        ready events on the loop cannot both pass the check.

        Returns:
            True if this call started the adapter
        """
        if self._listener_started:
            return False
        self._listener_started = True

        self._listener_task = asyncio.create_task(self._adapter.run())
        self._listener_task.add_done_callback(self._on_listener_done)
        logger.info("Started delivery listener")
        return True

    def _on_listener_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Delivery listener crashed: %s", exc, exc_info=exc)
