"""Bouncer data models.

Pydantic models for the messages that travel on the bus and the
identifiers used to route them.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FrozenModel(BaseModel):
    """Base model for immutable, hashable values."""

    model_config = ConfigDict(frozen=True)


class NetworkAddress(FrozenModel):
    """One IRC server + channel pair.

    ``server`` is the ``host:port`` string from the configuration.
    """

    server: str
    channel: str

    def __str__(self) -> str:
        return f"{self.server}/{self.channel}"


class DeliveryTarget(FrozenModel):
    """Webhook credentials for one platform channel."""

    webhook_id: int
    token: str = Field(repr=False)


class MessageState(str, Enum):
    """Direction of a bus message."""

    INCOMING = "incoming"  # IRC -> platform
    OUTGOING = "outgoing"  # platform -> IRC


class BouncerMessage(FrozenModel):
    """The unit published on the message bus.

    Attributes:
        network: ``host:port`` of the IRC server
        channel: Channel name on that server
        user: Origin nick; empty for messages from the platform side
        content: Message text
        state: Direction of travel
        ping: Whether the local nick was mentioned
    """

    network: str
    channel: str
    user: str = ""
    content: str
    state: MessageState
    ping: bool = False

    @property
    def address(self) -> NetworkAddress:
        return NetworkAddress(server=self.network, channel=self.channel)

    def __str__(self) -> str:
        return (
            f"BouncerMessage({self.network}, {self.channel}, {self.user}, "
            f"{self.content}, {self.state.name})"
        )


class RelayEvent(BaseModel):
    """A message event from the relay platform.

    The platform client is expected to have resolved the replied-to author
    and attachment URLs before handing the event over.
    """

    model_config = ConfigDict(extra="ignore")

    channel_id: int
    author_id: int
    author_name: str = ""
    content: str = ""
    reply_to: str | None = None
    attachments: list[str] = Field(default_factory=list)
