"""In-process publish/subscribe for cart events, keyed by user.

A subscription owns a bounded queue. When a slow subscriber's queue is full
the oldest pending event is discarded so that publishing never blocks the
job worker. Subscriptions opened without a user receive every event.
"""

import asyncio

import structlog

from cartstream.cart.events import CartEvent

logger = structlog.get_logger(__name__)


class Subscription:
    def __init__(self, notifier: "Notifier", user_id: str | None, maxsize: int):
        self.notifier = notifier
        self.user_id = user_id
        self.queue: asyncio.Queue[CartEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, event: CartEvent) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
            logger.debug("Subscriber buffer full, dropping oldest event", user_id=self.user_id)
        self.queue.put_nowait(event)

    async def get(self, timeout: float | None = None) -> CartEvent:
        """Next event; raises ``TimeoutError`` when ``timeout`` passes first."""
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.notifier.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class Notifier:
    def __init__(self, buffer_size: int = 100):
        self.buffer_size = buffer_size
        self._subscriptions: dict[str | None, set[Subscription]] = {}

    def subscribe(self, user_id: str | None = None) -> Subscription:
        key = str(user_id) if user_id is not None else None
        subscription = Subscription(self, key, self.buffer_size)
        self._subscriptions.setdefault(key, set()).add(subscription)
        logger.debug("Subscriber attached", user_id=key)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.user_id)
        if not subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscriptions[subscription.user_id]
        logger.debug("Subscriber detached", user_id=subscription.user_id)

    def subscriber_count(self, user_id: str | None = None) -> int:
        key = str(user_id) if user_id is not None else None
        return len(self._subscriptions.get(key, ()))

    def publish(self, event: CartEvent) -> int:
        """Deliver ``event`` to its user's subscribers and to wildcard ones.

        Returns the number of subscriptions reached.
        """
        targets = [*self._subscriptions.get(event.user_id, ()), *self._subscriptions.get(None, ())]
        for subscription in targets:
            subscription.offer(event)
        logger.debug(
            "Event published",
            event_name=event.name,
            user_id=event.user_id,
            mutation_id=event.mutation_id,
            subscribers=len(targets),
        )
        return len(targets)

    def close(self) -> None:
        for subscribers in list(self._subscriptions.values()):
            for subscription in list(subscribers):
                subscription.close()
