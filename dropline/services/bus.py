# dropline/services/bus.py
"""
In-memory topic bus.

Best-effort by contract: publish never waits for a subscriber, nothing is
persisted, and a subscriber that attaches after an event was published
never sees it. Every subscription owns a bounded FIFO and one delivery
task, so events published to a topic reach that subscriber in publish
order, and a slow sink only ever delays itself.
"""
import asyncio
import inspect
import itertools
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

Sink = Callable[[Any], Union[None, Awaitable[None]]]

PARTNERS = "partners"
ADMIN = "admin"

def customer_topic(customer_id: str) -> str:
    return f"customer:{customer_id}"

def order_topic(order_id: str) -> str:
    return f"order:{order_id}"

def topic_name(kind: str, key: Optional[str] = None) -> str:
    if kind in (PARTNERS, ADMIN):
        return kind
    if kind in ("customer", "order") and key:
        return f"{kind}:{key}"
    raise ValueError(f"Unknown topic {kind}:{key}")


class Subscription:
    def __init__(self, sub_id: int, topic: str, sink: Sink, maxsize: int):
        self.id = sub_id
        self.topic = topic
        self.sink = sink
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<Subscription {self.id} {self.topic}>"


class TopicBus:
    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._topics: Dict[str, Dict[int, Subscription]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, topic: str, sink: Sink) -> Subscription:
        """Attach `sink` to `topic`. Must be called from inside the running loop."""
        sub = Subscription(next(self._ids), topic, sink, self.queue_size)
        sub.task = asyncio.create_task(self._pump(sub), name=f"bus-{topic}-{sub.id}")
        self._topics.setdefault(topic, {})[sub.id] = sub
        logger.debug("Subscribed", topic=topic, subscription=sub.id)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self._topics.get(sub.topic)
        if subs is not None:
            subs.pop(sub.id, None)
            if not subs:
                del self._topics[sub.topic]
        if sub.task is not None and not sub.task.done():
            sub.task.cancel()
        logger.debug("Unsubscribed", topic=sub.topic, subscription=sub.id, dropped=sub.dropped)

    def publish(self, topic: str, event: Any) -> int:
        """Fire-and-forget. Returns how many subscribers the event was queued for."""
        subs = list(self._topics.get(topic, {}).values())
        for sub in subs:
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                # drop the oldest pending event; the newest state matters most
                sub.queue.get_nowait()
                sub.queue.task_done()
                sub.dropped += 1
                sub.queue.put_nowait(event)
                logger.warning("Subscriber lagging, dropped oldest event",
                               topic=topic, subscription=sub.id, dropped=sub.dropped)
        return len(subs)

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, {}))

    def subscriptions(self) -> List[Subscription]:
        return [s for subs in self._topics.values() for s in subs.values()]

    async def join(self) -> None:
        """Wait until every queued event has been handed to its sink."""
        await asyncio.gather(*(s.queue.join() for s in self.subscriptions()))

    async def close(self) -> None:
        subs = self.subscriptions()
        for sub in subs:
            self.unsubscribe(sub)
        tasks = [s.task for s in subs if s.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _pump(self, sub: Subscription) -> None:
        while True:
            event = await sub.queue.get()
            try:
                result = sub.sink(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                # isolated per subscriber: never reaches the publisher
                logger.exception("Subscriber sink failed", topic=sub.topic, subscription=sub.id)
            finally:
                sub.queue.task_done()
