"""In-process event bus for supervisor notifications."""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from gitreload.events.types import Event, EventType

logger = logging.getLogger(__name__)

EventCallback = Callable[[Event], Any]

DEFAULT_QUEUE_SIZE = 256


@dataclass
class _Subscription:
    queue: asyncio.Queue[Event]
    # None means every event type
    types: frozenset[EventType] | None = None
    dropped: int = 0

    def wants(self, event: Event) -> bool:
        return self.types is None or event.type in self.types


class EventBus:
    """Fan supervisor events out to queues and callbacks.

    Queues are bounded; when a consumer falls behind, its oldest event is
    dropped so publishing never blocks a supervisor tick. Callbacks may be
    plain functions or coroutines and run in registration order.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscriptions: dict[str, _Subscription] = {}
        self._callbacks: list[EventCallback] = []

    async def subscribe(
        self,
        subscriber_id: str,
        types: Iterable[EventType] | None = None,
    ) -> asyncio.Queue[Event]:
        """Register a queue receiving events, optionally only of some types.

        Subscribing again with the same id replaces the earlier queue.
        """
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=self.queue_size)
        self._subscriptions[subscriber_id] = _Subscription(
            queue=queue,
            types=frozenset(types) if types is not None else None,
        )
        logger.debug(f"Subscriber {subscriber_id} connected")
        return queue

    async def unsubscribe(self, subscriber_id: str) -> None:
        if self._subscriptions.pop(subscriber_id, None) is not None:
            logger.debug(f"Subscriber {subscriber_id} disconnected")

    def add_callback(self, callback: EventCallback) -> None:
        """Call callback for every published event."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: EventCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def dropped(self, subscriber_id: str) -> int:
        """Number of events discarded for a slow subscriber."""
        subscription = self._subscriptions.get(subscriber_id)
        return subscription.dropped if subscription else 0

    def _enqueue(self, subscriber_id: str, subscription: _Subscription, event: Event) -> None:
        queue = subscription.queue
        if queue.full():
            queue.get_nowait()
            subscription.dropped += 1
            logger.warning(f"Subscriber {subscriber_id} is lagging, dropped oldest event")
        queue.put_nowait(event)

    async def publish(self, event: Event) -> None:
        """Deliver event to matching subscribers, then to callbacks."""
        logger.debug(f"Publishing event: {event.type.value}")

        for subscriber_id, subscription in list(self._subscriptions.items()):
            if subscription.wants(event):
                self._enqueue(subscriber_id, subscription, event)

        # A broken handler must never abort a supervisor tick
        for callback in list(self._callbacks):
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Event callback failed for {event.type.value}: {e}")

    async def emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> Event:
        """Create and publish an event."""
        payload = dict(data or {})
        event = Event(type=event_type, revision=payload.get("revision"), data=payload)
        await self.publish(event)
        return event
