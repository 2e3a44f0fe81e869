"""Outbound delivery of IRC messages to the relay platform.

Provides:
- render_content: IRC -> platform text transforms (actions, mentions)
- DeliveryAdapter: the single bus consumer that executes webhooks
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Protocol

from irc_bouncer.bus import MessageBus
from irc_bouncer.models import BouncerMessage, DeliveryTarget, MessageState
from irc_bouncer.routing import RoutingTable

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 0.1  # seconds

# CTCP ACTION, sent by clients for "/me waves"
_ACTION_RE = re.compile("\x01ACTION([^\x01]+)\x01")


class DeliveryClient(Protocol):
    """Anything that can execute a webhook (duck typing for WebhookClient)."""

    async def deliver(self, target: DeliveryTarget, content: str, username: str) -> None:
        ...


def format_action(content: str) -> str:
    """Render a CTCP ACTION as emphasized text; other text is unchanged."""
    match = _ACTION_RE.search(content)
    if match is None:
        return content
    return f"*{match.group(1).strip()}*"


def render_content(message: BouncerMessage, owner_id: int) -> str:
    """Apply the platform-side transforms to an IRC message."""
    content = format_action(message.content)
    if message.ping:
        content = f"<@{owner_id}> {content}"
    return content


class DeliveryAdapter:
    """Delivers INCOMING bus messages through their channel's webhook.

    Runs once per process. Each message is tried ``attempts`` times with a
    fixed delay between tries and dropped if every try fails.
    """

    def __init__(
        self,
        bus: MessageBus,
        routing: RoutingTable,
        client: DeliveryClient,
        owner_id: int,
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        self._bus = bus
        self._routing = routing
        self._client = client
        self.owner_id = owner_id
        self.attempts = attempts
        self.retry_delay = retry_delay
        self.delivered = 0
        self.dropped = 0

    async def handle(self, message: BouncerMessage) -> bool:
        """Deliver one message.

        Returns:
            True if the webhook accepted it, False if it was dropped
        """
        if message.state is not MessageState.INCOMING:
            return False

        target = self._routing.target_for(message.address)
        if target is None:
            self.dropped += 1
            return False

        content = render_content(message, self.owner_id)

        for attempt in range(1, self.attempts + 1):
            try:
                await self._client.deliver(target, content, message.user)
                self.delivered += 1
                return True
            except Exception as e:
                logger.warning(
                    "Webhook delivery attempt %d/%d failed: %s",
                    attempt,
                    self.attempts,
                    e,
                )
                await asyncio.sleep(self.retry_delay)

        self.dropped += 1
        logger.error("Failed to send webhook, dropping message: %s", content)
        return False

    async def run(self) -> None:
        """Consume the bus until cancelled."""
        with self._bus.subscribe() as subscription:
            logger.info("Delivery adapter listening")
            try:
                async for message in subscription:
                    if message.state is MessageState.INCOMING:
                        await self.handle(message)
            except asyncio.CancelledError:
                logger.info("Delivery adapter cancelled")
                raise
