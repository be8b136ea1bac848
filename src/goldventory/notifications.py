"""In-process change notifications for reactive views."""
from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


class Topic(str, enum.Enum):
    THRESHOLDS = "thresholds"
    WEIGHT_MODES = "weight_modes"
    INVENTORY = "inventory"
    ORDERS = "orders"


@dataclass(frozen=True)
class ChangeEvent:
    topic: Topic
    detail: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Subscription:
    """Queue of change events for a subset of topics.

    Iterate with ``async for``; call :meth:`close` (or leave the ``async with``
    block) to stop receiving events.
    """

    def __init__(self, feed: "ChangeFeed", topics: frozenset[Topic]) -> None:
        self._feed = feed
        self.topics = topics
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self.closed = False

    def deliver(self, event: ChangeEvent) -> None:
        if self.closed or event.topic not in self.topics:
            return
        self._queue.put_nowait(event)

    async def get(self) -> ChangeEvent:
        return await self._queue.get()

    def drain(self) -> list[ChangeEvent]:
        """Return every event already queued without waiting."""

        events: list[ChangeEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class ChangeFeed:
    """Fan-out of change events to every live :class:`Subscription`."""

    def __init__(self) -> None:
        self._subscriptions: set[Subscription] = set()

    def subscribe(self, *topics: Topic) -> Subscription:
        selected = frozenset(topics) if topics else frozenset(Topic)
        subscription = Subscription(self, selected)
        self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, topic: Topic, **detail: Any) -> ChangeEvent:
        event = ChangeEvent(topic=topic, detail=detail)
        logger.debug("Publishing %s change %s", topic.value, detail)
        for subscription in list(self._subscriptions):
            subscription.deliver(event)
        return event


__all__ = ["ChangeEvent", "ChangeFeed", "Subscription", "Topic"]
