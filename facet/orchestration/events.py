from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from facet.core import metrics
from facet.core.logging import get_logger
from facet.schemas.outcome import StepStatusEvent

logger = get_logger(name=__name__)

EventListener = Callable[[StepStatusEvent], None]


class EventSubscription:
    def __init__(self, maxsize: int) -> None:
        self._queue: asyncio.Queue[StepStatusEvent] = asyncio.Queue(maxsize=maxsize)

    def offer(self, event: StepStatusEvent) -> bool:
        dropped = False
        if self._queue.full():
            self._queue.get_nowait()
            dropped = True
        self._queue.put_nowait(event)
        return dropped

    async def get(self) -> StepStatusEvent:
        return await self._queue.get()

    def drain(self) -> list[StepStatusEvent]:
        events: list[StepStatusEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> StepStatusEvent:
        return await self._queue.get()


class StepEventBus:
    """Fan-out of step and pipeline status changes to live subscribers.

    Publishing never blocks a pipeline: a full subscriber queue drops its
    oldest event. Nothing is persisted.
    """

    def __init__(self, *, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._subscriptions: set[EventSubscription] = set()
        self._listeners: list[EventListener] = []

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[EventSubscription]:
        subscription = EventSubscription(self._queue_size)
        self._subscriptions.add(subscription)
        try:
            yield subscription
        finally:
            self._subscriptions.discard(subscription)

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: StepStatusEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.offer(event):
                metrics.increment_event_dropped()
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # listener failures must not disturb the pipeline
                logger.warning("step_event_listener_failed", error=str(exc), step=event.step_id)
