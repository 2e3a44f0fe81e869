"""Process-wide broadcast bus.

Every published message is copied to every live subscription. Subscribers
filter locally by direction and network, so IRC connections and the
delivery adapter never reference each other.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from types import TracebackType

from irc_bouncer.models import BouncerMessage

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 32


class Subscription:
    """One subscriber's view of the bus.

    Receives every message published after it was created. When the
    subscriber falls more than ``capacity`` messages behind, the oldest
    message is dropped and counted in ``lagged``.
    """

    def __init__(self, bus: MessageBus, capacity: int) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[BouncerMessage] = asyncio.Queue(maxsize=capacity)
        self.lagged = 0
        self.closed = False

    def _offer(self, message: BouncerMessage) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.lagged += 1
            logger.warning(
                "Bus subscriber lagging, dropped oldest message (%d dropped so far)",
                self.lagged,
            )
        self._queue.put_nowait(message)

    async def get(self) -> BouncerMessage:
        """Wait for the next message."""
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Stop receiving messages."""
        if not self.closed:
            self.closed = True
            self._bus._unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[BouncerMessage]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[BouncerMessage]:
        while not self.closed:
            yield await self.get()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class MessageBus:
    """Fire-and-forget broadcast of BouncerMessages."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Create a subscription that sees all future messages."""
        subscription = Subscription(self, self._capacity)
        self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscribers.remove(subscription)

    def publish(self, message: BouncerMessage) -> int:
        """Deliver a message to every current subscriber.

        Never blocks. Publishing with no subscribers is not an error.

        Returns:
            Number of subscribers the message was delivered to
        """
        subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._offer(message)
        if not subscribers:
            logger.debug("Published with no subscribers: %s", message)
        return len(subscribers)
