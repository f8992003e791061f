"""Server-sent events framing for cart subscriptions."""

import json
from collections.abc import AsyncIterator

from cartstream.cart.events import CartEvent
from cartstream.notifications.notifier import Notifier


def format_frame(event: str, data: str) -> str:
    lines = [f"event: {event}"]
    lines.extend(f"data: {chunk}" for chunk in data.splitlines() or [""])
    return "\n".join(lines) + "\n\n"


def event_frame(event: CartEvent) -> str:
    return format_frame(event.name, event.model_dump_json())


def ping_frame() -> str:
    return format_frame("ping", json.dumps({}))


async def event_stream(notifier: Notifier, user_id: str | None, keepalive_seconds: float) -> AsyncIterator[str]:
    """Yield SSE frames for ``user_id`` until the consumer goes away.

    The subscription is attached on the first iteration and released when the
    generator is closed, so a stream that never starts holds nothing. A
    ``ping`` frame is emitted whenever ``keepalive_seconds`` pass without an
    event.
    """
    async with notifier.subscribe(user_id) as subscription:
        while True:
            try:
                event = await subscription.get(timeout=keepalive_seconds)
            except TimeoutError:
                yield ping_frame()
                continue
            yield event_frame(event)
