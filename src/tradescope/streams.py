"""Hot multicast streams for quotes, opportunities and status messages.

A Broadcaster fans each published item out to every subscriber that is
attached at publish time. Late subscribers see nothing published before
they subscribed. Each subscriber owns a FIFO queue, so items from a single
publisher arrive in publish order.
"""

from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

from tradescope.exceptions import StreamClosedError
from tradescope.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class Subscription(Generic[T]):
    """Receiving end of a Broadcaster. Async-iterable until closed."""

    def __init__(self, broadcaster: Broadcaster[T], maxsize: int) -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        # Set on every offer and on close; wakes blocked readers.
        self._ready = asyncio.Event()
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, item: T) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            # Slow consumer: drop the oldest item to keep the stream live.
            self._queue.get_nowait()
            self._queue.put_nowait(item)
            self.dropped += 1
        self._ready.set()

    async def get(self) -> T:
        """Wait for the next item.

        Raises:
            StreamClosedError: If the subscription is closed and drained,
                including while this call is waiting.
        """
        while self._queue.empty():
            if self._closed:
                raise StreamClosedError(f"Stream {self._broadcaster.name} is closed")
            self._ready.clear()
            await self._ready.wait()
        return self._queue.get_nowait()

    def get_nowait(self) -> T:
        """Return the next queued item or raise asyncio.QueueEmpty."""
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Detach from the broadcaster. Queued items remain readable."""
        if not self._closed:
            self._closed = True
            self._broadcaster._detach(self)
            self._ready.set()

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        try:
            return await self.get()
        except StreamClosedError:
            raise StopAsyncIteration from None

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self.close()


class Broadcaster(Generic[T]):
    """Publish/subscribe channel with no replay for late subscribers.

    Args:
        name: Stream name used in log events.
        maxsize: Per-subscriber queue bound (0 = unbounded).
    """

    def __init__(self, name: str, maxsize: int = 10_000) -> None:
        self._name = name
        self._maxsize = maxsize
        self._subscribers: list[Subscription[T]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription[T]:
        """Attach a new subscriber that receives items published from now on."""
        subscription: Subscription[T] = Subscription(self, self._maxsize)
        self._subscribers.append(subscription)
        logger.debug("stream_subscribed", stream=self._name, total=len(self._subscribers))
        return subscription

    def publish(self, item: T) -> int:
        """Deliver an item to all current subscribers. Returns the fan-out count."""
        for subscription in self._subscribers.copy():
            subscription._offer(item)
        return len(self._subscribers)

    def close(self) -> None:
        """Detach every subscriber."""
        for subscription in self._subscribers.copy():
            subscription.close()

    def _detach(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
        logger.debug("stream_unsubscribed", stream=self._name, total=len(self._subscribers))
