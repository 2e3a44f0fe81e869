"""Static routing between IRC channels and platform channels.

The table is built once from configuration before any task starts and is
only read afterwards, so it is shared between tasks without locking.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

from irc_bouncer.models import DeliveryTarget, NetworkAddress

if TYPE_CHECKING:
    from irc_bouncer.config import BouncerConfig

logger = logging.getLogger(__name__)

_WEBHOOK_RE = re.compile(r".+/webhooks/(\d+)/([^/]+)")


def webhook_from_url(webhook_url: str) -> DeliveryTarget | None:
    """Extract the webhook id and token from a webhook URL.

    Returns:
        The DeliveryTarget, or None if the URL does not look like a webhook
    """
    match = _WEBHOOK_RE.match(webhook_url)
    if match is None:
        return None
    return DeliveryTarget(webhook_id=int(match.group(1)), token=match.group(2))


class RoutingTable:
    """Bidirectional channel map.

    Attributes:
        to_target: NetworkAddress -> DeliveryTarget (IRC -> platform)
        to_network: platform channel id -> NetworkAddress (platform -> IRC)
    """

    def __init__(
        self,
        to_target: Mapping[NetworkAddress, DeliveryTarget],
        to_network: Mapping[int, NetworkAddress],
    ) -> None:
        self.to_target: Mapping[NetworkAddress, DeliveryTarget] = MappingProxyType(
            dict(to_target)
        )
        self.to_network: Mapping[int, NetworkAddress] = MappingProxyType(
            dict(to_network)
        )

    @classmethod
    def from_config(cls, config: BouncerConfig) -> RoutingTable:
        """Build both directions for every configured (server, channel)."""
        to_target: dict[NetworkAddress, DeliveryTarget] = {}
        to_network: dict[int, NetworkAddress] = {}

        for server in config.servers:
            for channel in server.channels:
                address = NetworkAddress(server=server.address, channel=channel.name)
                target = webhook_from_url(channel.webhook_url)
                if target is None:
                    raise ValueError(f"invalid webhook URL for {address}")
                to_target[address] = target
                to_network[channel.discord_channel] = address

        logger.info("Routing table built with %d channels", len(to_target))
        return cls(to_target, to_network)

    def target_for(self, address: NetworkAddress) -> DeliveryTarget | None:
        """Look up the webhook for an IRC channel; None if unconfigured."""
        target = self.to_target.get(address)
        if target is None:
            logger.warning("Received message from unexpected channel %s", address)
        return target

    def network_for(self, channel_id: int) -> NetworkAddress | None:
        """Look up the IRC channel for a platform channel; None if unconfigured."""
        address = self.to_network.get(channel_id)
        if address is None:
            logger.warning("Received message from unexpected channel %s", channel_id)
        return address

    def __len__(self) -> int:
        return len(self.to_target)
