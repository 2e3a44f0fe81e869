"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from asyncio import StreamWriter
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from fakes import FakeIRCServer, make_config_dict
from irc_bouncer.bus import MessageBus
from irc_bouncer.config import BouncerConfig
from irc_bouncer.routing import RoutingTable

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config_dict() -> dict[str, Any]:
    return make_config_dict()


@pytest.fixture
def bouncer_config(config_dict: dict[str, Any]) -> BouncerConfig:
    return BouncerConfig.model_validate(config_dict)


@pytest.fixture
def routing(bouncer_config: BouncerConfig) -> RoutingTable:
    return RoutingTable.from_config(bouncer_config)


@pytest.fixture
def bus() -> MessageBus:
    return MessageBus()


@pytest.fixture
def mock_tcp_writer() -> AsyncMock:
    """Create a mock TCP writer."""
    writer = AsyncMock(spec=StreamWriter)
    writer.write = MagicMock()  # write is sync, drain is async
    writer.drain = AsyncMock()
    writer.close = MagicMock()
    writer.wait_closed = AsyncMock()
    writer.is_closing = MagicMock(return_value=False)
    return writer


@pytest.fixture
async def irc_server() -> AsyncGenerator[FakeIRCServer, None]:
    """Start a real loopback IRC server for connection tests."""
    server = FakeIRCServer()
    await server.start()
    yield server
    await server.stop()
