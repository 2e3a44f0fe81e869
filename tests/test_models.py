"""Tests for bouncer data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from irc_bouncer.models import (
    BouncerMessage,
    DeliveryTarget,
    MessageState,
    NetworkAddress,
    RelayEvent,
)


# =============================================================================
# BouncerMessage
# =============================================================================


class TestBouncerMessage:
    def test_defaults_for_platform_origin(self) -> None:
        message = BouncerMessage(
            network="irc.example.org:6667",
            channel="#test",
            content="hi",
            state=MessageState.OUTGOING,
        )
        assert message.user == ""
        assert message.ping is False

    def test_immutable(self) -> None:
        message = BouncerMessage(
            network="irc.example.org:6667",
            channel="#test",
            content="hi",
            state=MessageState.OUTGOING,
        )
        with pytest.raises(ValidationError):
            message.content = "changed"  # type: ignore[misc]

    def test_address(self) -> None:
        message = BouncerMessage(
            network="irc.example.org:6667",
            channel="#test",
            user="alice",
            content="hi",
            state=MessageState.INCOMING,
        )
        assert message.address == NetworkAddress(server="irc.example.org:6667", channel="#test")

    def test_str_summary(self) -> None:
        message = BouncerMessage(
            network="irc.example.org:6667",
            channel="#test",
            user="alice",
            content="hi",
            state=MessageState.INCOMING,
        )
        assert str(message) == "BouncerMessage(irc.example.org:6667, #test, alice, hi, INCOMING)"


# =============================================================================
# Identifiers
# =============================================================================


class TestIdentifiers:
    def test_network_address_usable_as_key(self) -> None:
        mapping = {NetworkAddress(server="a:1", channel="#x"): 1}
        assert mapping[NetworkAddress(server="a:1", channel="#x")] == 1
        assert NetworkAddress(server="a:1", channel="#y") not in mapping

    def test_network_address_str(self) -> None:
        assert str(NetworkAddress(server="a:1", channel="#x")) == "a:1/#x"

    def test_delivery_target_equality(self) -> None:
        assert DeliveryTarget(webhook_id=42, token="tok") == DeliveryTarget(webhook_id=42, token="tok")
        assert DeliveryTarget(webhook_id=42, token="tok") != DeliveryTarget(webhook_id=42, token="other")


# =============================================================================
# RelayEvent
# =============================================================================


class TestRelayEvent:
    def test_minimal(self) -> None:
        event = RelayEvent(channel_id=100, author_id=1)
        assert event.content == ""
        assert event.reply_to is None
        assert event.attachments == []

    def test_ignores_extra_fields(self) -> None:
        event = RelayEvent.model_validate(
            {"channel_id": 100, "author_id": 1, "content": "hi", "guild_id": 5}
        )
        assert event.content == "hi"
