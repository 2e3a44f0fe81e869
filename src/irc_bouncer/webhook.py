"""Webhook delivery to the relay platform.

Executes a channel webhook over HTTP so IRC messages show up under the
sender's nick.
"""

from __future__ import annotations

import logging
from types import TracebackType

import httpx

from irc_bouncer.config import DEFAULT_AVATAR_URL
from irc_bouncer.models import DeliveryTarget

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api"

# Platform limits on webhook payloads
MAX_CONTENT_LENGTH = 2000
MAX_USERNAME_LENGTH = 80


class DeliveryError(Exception):
    """Raised when a webhook call fails."""

    pass


class WebhookClient:
    """Thin async client for executing webhooks.

    Usage:
        async with WebhookClient() as client:
            await client.deliver(target, "hello", "alice")
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        base_url: str = DISCORD_API,
        avatar_url: str = DEFAULT_AVATAR_URL,
        timeout: float = 10.0,
    ) -> None:
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")
        self.avatar_url = avatar_url

    def url_for(self, target: DeliveryTarget) -> str:
        return f"{self._base_url}/webhooks/{target.webhook_id}/{target.token}"

    async def deliver(self, target: DeliveryTarget, content: str, username: str) -> None:
        """Post one message through the target's webhook.

        Raises:
            DeliveryError: On a transport failure or a non-2xx response
        """
        payload = {
            "content": content[:MAX_CONTENT_LENGTH],
            "username": username[:MAX_USERNAME_LENGTH],
            "avatar_url": self.avatar_url,
        }
        try:
            resp = await self._client.post(self.url_for(target), json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(
                f"Webhook {target.webhook_id} returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"Webhook {target.webhook_id} failed: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> WebhookClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
