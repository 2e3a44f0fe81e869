"""Tests for configuration loading.

Tests the configuration module's ability to:
- Load process settings from environment variables
- Use sensible defaults when not configured
- Load and validate the JSON network layout
- Reject malformed configuration with ConfigError
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Generator

import pytest
from pydantic import ValidationError

from irc_bouncer.config import (
    BouncerConfig,
    ConfigError,
    Settings,
    get_config,
    load_config,
    reset_config,
    set_config,
)


@pytest.fixture(autouse=True)
def clean_env() -> Generator[None, None, None]:
    """Clean BNC_ environment variables before and after each test."""
    original_env = {k: v for k, v in os.environ.items() if k.startswith("BNC_")}
    reset_config()
    for key in original_env:
        del os.environ[key]

    yield

    for key in list(os.environ.keys()):
        if key.startswith("BNC_"):
            del os.environ[key]
    os.environ.update(original_env)
    reset_config()


def write_config(tmp_path: Path, data: Any) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


# ==============================================================================
# Settings
# ==============================================================================


class TestSettings:
    def test_default_values(self) -> None:
        settings = Settings()
        assert settings.config_path == Path("config.json")
        assert settings.log_level == "INFO"
        assert settings.effective_ceiling == 446
        assert settings.delivery_attempts == 3
        assert settings.delivery_retry_delay == pytest.approx(0.1)
        assert settings.bus_capacity == 32

    def test_env_override(self) -> None:
        os.environ["BNC_EFFECTIVE_CEILING"] = "400"
        os.environ["BNC_CONFIG_PATH"] = "/etc/bouncer.json"
        settings = Settings()
        assert settings.effective_ceiling == 400
        assert settings.config_path == Path("/etc/bouncer.json")

    def test_log_level_normalized(self) -> None:
        os.environ["BNC_LOG_LEVEL"] = "debug"
        assert Settings().log_level == "DEBUG"

    def test_ceiling_above_rfc_limit_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(effective_ceiling=513)

    def test_singleton(self) -> None:
        assert get_config() is get_config()
        custom = Settings(bus_capacity=8)
        set_config(custom)
        assert get_config() is custom
        reset_config()
        assert get_config() is not custom


# ==============================================================================
# Network configuration
# ==============================================================================


class TestLoadConfig:
    def test_loads_valid_file(self, tmp_path: Path, config_dict: dict[str, Any]) -> None:
        config = load_config(write_config(tmp_path, config_dict))

        assert isinstance(config, BouncerConfig)
        assert config.discord_user_id == 1234
        assert [s.address for s in config.servers] == [
            "irc.example.org:6667",
            "irc.libera.chat:6697",
        ]
        libera = config.servers[1]
        assert libera.tls is True
        assert libera.password == "hunter2"

    def test_password_optional(self, bouncer_config: BouncerConfig) -> None:
        assert bouncer_config.servers[0].password is None

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            load_config(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_config(path)

    def test_missing_required_field(self, tmp_path: Path, config_dict: dict[str, Any]) -> None:
        del config_dict["discord_user_id"]
        with pytest.raises(ConfigError, match="Invalid config"):
            load_config(write_config(tmp_path, config_dict))

    @pytest.mark.parametrize("address", ["irc.example.org", "irc.example.org:notaport", ":6667", "host:70000"])
    def test_bad_address(self, tmp_path: Path, config_dict: dict[str, Any], address: str) -> None:
        config_dict["servers"][0]["address"] = address
        with pytest.raises(ConfigError):
            load_config(write_config(tmp_path, config_dict))

    def test_bad_webhook_url(self, tmp_path: Path, config_dict: dict[str, Any]) -> None:
        config_dict["servers"][0]["channels"][0]["webhook_url"] = "https://example.org/hook"
        with pytest.raises(ConfigError, match="webhook"):
            load_config(write_config(tmp_path, config_dict))

    def test_channel_too_long_for_ceiling(self, tmp_path: Path, config_dict: dict[str, Any]) -> None:
        config_dict["servers"][0]["channels"][0]["name"] = "#" + "a" * 60
        path = write_config(tmp_path, config_dict)

        assert load_config(path).servers[0].channels[0].name == "#" + "a" * 60
        with pytest.raises(ConfigError, match="no room"):
            load_config(path, ceiling=64)

    def test_check_ceiling_accepts_default(self, bouncer_config: BouncerConfig) -> None:
        bouncer_config.check_ceiling(446)

    def test_nick_with_space_rejected(self, tmp_path: Path, config_dict: dict[str, Any]) -> None:
        config_dict["servers"][0]["nick"] = "two words"
        with pytest.raises(ConfigError):
            load_config(write_config(tmp_path, config_dict))

    def test_duplicate_channel_rejected(self, tmp_path: Path, config_dict: dict[str, Any]) -> None:
        channels = config_dict["servers"][0]["channels"]
        channels.append(dict(channels[0], discord_channel=999))
        with pytest.raises(ConfigError, match="configured twice"):
            load_config(write_config(tmp_path, config_dict))

    def test_duplicate_platform_channel_rejected(
        self, tmp_path: Path, config_dict: dict[str, Any]
    ) -> None:
        config_dict["servers"][1]["channels"][0]["discord_channel"] = 100
        with pytest.raises(ConfigError, match="more than once"):
            load_config(write_config(tmp_path, config_dict))
