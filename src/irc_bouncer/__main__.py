"""Entry point for the IRC bouncer.

Usage:
    python -m irc_bouncer
    irc-bouncer

Environment Variables:
    BNC_CONFIG_PATH: Path to the JSON network config (default: config.json)
    BNC_LOG_LEVEL: Logging level (default: INFO)
"""

from __future__ import annotations

import asyncio
import logging
import sys

from pydantic import ValidationError

from irc_bouncer.bouncer import run_bouncer
from irc_bouncer.config import ConfigError, get_config, load_config


def main() -> int:
    """Main entry point."""
    try:
        settings = get_config()
    except ValidationError as e:
        print(f"Invalid environment configuration: {e}", file=sys.stderr)
        return 1

    settings.setup_logging()
    logger = logging.getLogger(__name__)
    logger.debug("Settings: %s", settings.to_dict())

    try:
        config = load_config(settings.config_path, settings.effective_ceiling)
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    logger.info(
        "Loaded %d server(s) from %s", len(config.servers), settings.config_path
    )

    try:
        return asyncio.run(run_bouncer(config, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 0


if __name__ == "__main__":
    sys.exit(main())
