"""Tests for the static routing table."""

from __future__ import annotations

import logging

import pytest

from irc_bouncer.config import BouncerConfig
from irc_bouncer.models import DeliveryTarget, NetworkAddress
from irc_bouncer.routing import RoutingTable, webhook_from_url


class TestWebhookFromUrl:
    def test_extracts_id_and_token(self) -> None:
        target = webhook_from_url("https://discord.com/api/webhooks/42/tok")
        assert target == DeliveryTarget(webhook_id=42, token="tok")

    def test_trailing_path_is_ignored(self) -> None:
        target = webhook_from_url("https://discord.com/api/webhooks/42/tok/slack")
        assert target is not None
        assert target.webhook_id == 42

    @pytest.mark.parametrize(
        "url",
        [
            "https://discord.com/api/channels/42",
            "https://discord.com/api/webhooks/notanumber/tok",
            "https://discord.com/api/webhooks/42",
            "",
        ],
    )
    def test_non_webhook_urls(self, url: str) -> None:
        assert webhook_from_url(url) is None


class TestRoutingTable:
    def test_every_configured_channel_resolves_both_ways(
        self, bouncer_config: BouncerConfig, routing: RoutingTable
    ) -> None:
        for server in bouncer_config.servers:
            for channel in server.channels:
                address = NetworkAddress(server=server.address, channel=channel.name)
                assert routing.target_for(address) == webhook_from_url(channel.webhook_url)
                assert routing.network_for(channel.discord_channel) == address

        assert len(routing) == 3

    def test_scenario_mapping(self, routing: RoutingTable) -> None:
        address = NetworkAddress(server="irc.example.org:6667", channel="#test")
        assert routing.target_for(address) == DeliveryTarget(webhook_id=42, token="tok")

    def test_unknown_pairs_are_absent(
        self, routing: RoutingTable, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING):
            assert routing.target_for(NetworkAddress(server="irc.example.org:6667", channel="#nope")) is None
            assert routing.target_for(NetworkAddress(server="other:6667", channel="#test")) is None
            assert routing.network_for(999) is None
        assert "unexpected channel" in caplog.text

    def test_maps_are_read_only(self, routing: RoutingTable) -> None:
        with pytest.raises(TypeError):
            routing.to_network[999] = NetworkAddress(server="x:1", channel="#x")  # type: ignore[index]

    def test_address_equality_is_structural(self) -> None:
        a = NetworkAddress(server="irc.example.org:6667", channel="#test")
        b = NetworkAddress(server="irc.example.org:6667", channel="#test")
        assert a == b
        assert hash(a) == hash(b)
