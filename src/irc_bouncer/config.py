"""Configuration management for the IRC bouncer.

This module provides two layers of configuration:
- Settings: process-level knobs from environment variables (BNC_ prefix)
- BouncerConfig: the network/channel layout loaded from a JSON file

Environment Variables:
    BNC_CONFIG_PATH: Path to the JSON network config (default: config.json)
    BNC_LOG_LEVEL: Logging level (default: INFO)
    BNC_EFFECTIVE_CEILING: Max outbound frame size in bytes (default: 446)
    BNC_DELIVERY_ATTEMPTS: Webhook delivery attempts per message (default: 3)
    BNC_DELIVERY_RETRY_DELAY_MS: Delay between delivery attempts (default: 100)
    BNC_BUS_CAPACITY: Per-subscriber bus queue size (default: 32)
    BNC_AVATAR_URL: Avatar shown on relayed webhook messages

Usage:
    from irc_bouncer.config import get_config, load_config

    settings = get_config()
    bouncer_config = load_config(settings.config_path)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from irc_bouncer.protocol import (
    DEFAULT_EFFECTIVE_CEILING,
    MAX_FRAME_BYTES,
    TERMINATOR,
    privmsg_prefix,
)
from irc_bouncer.routing import webhook_from_url

DEFAULT_AVATAR_URL = "https://i.imgur.com/4amDEwM.jpg"


class ConfigError(Exception):
    """Raised when the network configuration cannot be loaded."""

    pass


# =============================================================================
# Process settings
# =============================================================================


class Settings(BaseSettings):
    """Process settings with environment variable support.

    All settings can be overridden via environment variables prefixed with BNC_.
    For example, BNC_LOG_LEVEL=DEBUG sets log_level to DEBUG.
    """

    model_config = SettingsConfigDict(
        env_prefix="BNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    config_path: Path = Field(
        default=Path("config.json"),
        description="Path to the JSON network configuration",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    effective_ceiling: int = Field(
        default=DEFAULT_EFFECTIVE_CEILING,
        ge=64,
        le=MAX_FRAME_BYTES,
        description="Max outbound frame size in bytes, terminator included",
    )

    delivery_attempts: int = Field(
        default=3,
        ge=1,
        description="Webhook delivery attempts per message",
    )
    delivery_retry_delay_ms: int = Field(
        default=100,
        ge=0,
        description="Fixed delay between webhook delivery attempts (milliseconds)",
    )

    bus_capacity: int = Field(
        default=32,
        ge=1,
        description="Messages buffered per bus subscriber before the oldest is dropped",
    )

    avatar_url: str = Field(
        default=DEFAULT_AVATAR_URL,
        description="Avatar shown on relayed webhook messages",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def delivery_retry_delay(self) -> float:
        return self.delivery_retry_delay_ms / 1000

    def setup_logging(self) -> None:
        """Configure logging based on config settings."""
        logging.basicConfig(
            level=getattr(logging, self.log_level, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary for logging/debugging."""
        return {
            "config_path": str(self.config_path),
            "log_level": self.log_level,
            "effective_ceiling": self.effective_ceiling,
            "delivery_attempts": self.delivery_attempts,
            "delivery_retry_delay_ms": self.delivery_retry_delay_ms,
            "bus_capacity": self.bus_capacity,
        }


# =============================================================================
# Network configuration file
# =============================================================================


class ChannelConfig(BaseModel):
    """One bridged channel."""

    name: str = Field(min_length=1)
    discord_channel: int
    webhook_url: str

    @field_validator("webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: str) -> str:
        if webhook_from_url(v) is None:
            raise ValueError(f"not a webhook URL: {v!r}")
        return v


class ServerConfig(BaseModel):
    """One IRC network."""

    address: str
    tls: bool = False
    nick: str = Field(min_length=1)
    password: str | None = None
    channels: list[ChannelConfig] = Field(default_factory=list)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        host, sep, port = v.rpartition(":")
        if not sep or not host:
            raise ValueError(f"address must be host:port, got {v!r}")
        if not port.isdigit() or not 1 <= int(port) <= 65535:
            raise ValueError(f"invalid port in address {v!r}")
        return v

    @field_validator("nick")
    @classmethod
    def validate_nick(cls, v: str) -> str:
        if any(c in v for c in " \r\n\x00"):
            raise ValueError(f"invalid nick {v!r}")
        return v


class BouncerConfig(BaseModel):
    """The network/channel layout, loaded once at startup.

    Attributes:
        token: Platform bot credential, handed to the gateway client
        discord_user_id: The owner; only their messages are relayed to IRC
        servers: IRC networks to connect to
    """

    token: str
    discord_user_id: int
    servers: list[ServerConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_channels(self) -> BouncerConfig:
        """Every (network, channel) pair and platform channel is bridged once."""
        seen_pairs: set[tuple[str, str]] = set()
        seen_ids: set[int] = set()
        for server in self.servers:
            for channel in server.channels:
                pair = (server.address, channel.name)
                if pair in seen_pairs:
                    raise ValueError(f"channel {channel.name} on {server.address} configured twice")
                if channel.discord_channel in seen_ids:
                    raise ValueError(
                        f"platform channel {channel.discord_channel} bridged more than once"
                    )
                seen_pairs.add(pair)
                seen_ids.add(channel.discord_channel)
        return self

    def check_ceiling(self, ceiling: int) -> None:
        """Check every channel leaves room for PRIVMSG text under the ceiling.

        Raises:
            ConfigError: If a channel name is too long for the ceiling
        """
        for server in self.servers:
            for channel in server.channels:
                overhead = len(TERMINATOR) + len(privmsg_prefix(channel.name).encode("utf-8"))
                if ceiling <= overhead:
                    raise ConfigError(
                        f"channel {channel.name} on {server.address} leaves no room "
                        f"for message text under the {ceiling} byte ceiling"
                    )


def load_config(
    path: Path | str, ceiling: int = DEFAULT_EFFECTIVE_CEILING
) -> BouncerConfig:
    """Load and validate the JSON network configuration.

    Args:
        path: The JSON file to read
        ceiling: Outbound frame ceiling every channel must fit under

    Raises:
        ConfigError: If the file is missing, not JSON, fails validation,
            or names a channel too long for the ceiling
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config {path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config {path} is not valid JSON: {e}") from e

    try:
        config = BouncerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e
    config.check_ceiling(ceiling)
    return config


# Module-level singleton instance
_config_instance: Settings | None = None


def get_config() -> Settings:
    """Get the singleton settings instance.

    Creates the settings on first call, caching them for subsequent calls.

    Note:
        For testing, use set_config() to inject test settings,
        or call reset_config() to force reloading from environment.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Settings()
    return _config_instance


def set_config(config: Settings) -> None:
    """Set the settings instance (primarily for testing)."""
    global _config_instance
    _config_instance = config


def reset_config() -> None:
    """Reset the settings singleton."""
    global _config_instance
    _config_instance = None
