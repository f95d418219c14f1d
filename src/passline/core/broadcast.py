"""Broadcaster - replay-last-value publish/subscribe for state updates."""

from __future__ import annotations

import asyncio
from typing import Any, Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

_CLOSED: Any = object()
_UNSET: Any = object()


class Subscription(Generic[T]):
    """A subscriber's view of a Broadcaster.

    Receives the most recently published value on creation, then every
    value published afterwards, dropping the oldest ones if the consumer
    falls more than ``buffer_size`` values behind.

    Usable as a context manager (sync or async) so that the subscription is
    released when the caller is done with it:

        async with orchestrator.observe_state() as states:
            async for state in states:
                ...
    """

    def __init__(self, broadcaster: Broadcaster[T], buffer_size: int) -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=buffer_size)
        self._closing = False
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, value: T) -> bool:
        """Enqueue without blocking. Returns True if the oldest value was evicted."""
        evicted = False
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self.dropped += 1
                evicted = True
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(value)
        return evicted

    async def get(self) -> T:
        """Wait for the next value.

        Raises:
            StopAsyncIteration: If the subscription or broadcaster was closed.
        """
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        value = await self._queue.get()
        if value is _CLOSED:
            self._closed = True
            raise StopAsyncIteration
        return value

    def get_nowait(self) -> T:
        """Return the next buffered value.

        Raises:
            asyncio.QueueEmpty: If nothing is buffered.
        """
        value = self._queue.get_nowait()
        if value is _CLOSED:
            self._closed = True
            raise asyncio.QueueEmpty
        return value

    def drain(self) -> list[T]:
        """Return every buffered value, oldest first."""
        values: list[T] = []
        while True:
            try:
                values.append(self.get_nowait())
            except asyncio.QueueEmpty:
                return values

    def close(self) -> None:
        """Stop receiving values. Pending ``get()`` calls finish iteration."""
        if self._closing:
            return
        self._closing = True
        self._broadcaster._unsubscribe(self)
        self._offer(_CLOSED)

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        return await self.get()

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    async def __aenter__(self) -> Subscription[T]:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class Broadcaster(Generic[T]):
    """Multi-reader channel that never blocks the publisher.

    Features:
    - Late subscribers immediately receive the last published value
    - Per-subscriber bounded queue, drop-oldest on overflow
    - Subscribe/unsubscribe safe to call while publishing
    """

    def __init__(self, initial: T = _UNSET, buffer_size: int = 16) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self._value: T = initial
        self._buffer_size = buffer_size
        self._subscribers: list[Subscription[T]] = []
        self._closed = False

    @property
    def value(self) -> T:
        """The most recently published value.

        Raises:
            LookupError: If nothing has been published yet.
        """
        if self._value is _UNSET:
            raise LookupError("No value published yet")
        return self._value

    @property
    def has_value(self) -> bool:
        return self._value is not _UNSET

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, value: T) -> None:
        """Record ``value`` as latest and hand it to every subscriber."""
        if self._closed:
            raise RuntimeError("Broadcaster is closed")
        self._value = value
        for subscription in list(self._subscribers):
            if subscription._offer(value):
                logger.debug("Subscriber lagging, dropped oldest value", dropped=subscription.dropped)

    def subscribe(self) -> Subscription[T]:
        """Create a subscription primed with the latest value, if any."""
        subscription: Subscription[T] = Subscription(self, self._buffer_size)
        if self._closed:
            subscription.close()
            return subscription
        if self._value is not _UNSET:
            subscription._offer(self._value)
        self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def close(self) -> None:
        """End every subscription's iteration."""
        self._closed = True
        for subscription in list(self._subscribers):
            subscription.close()
        self._subscribers.clear()
