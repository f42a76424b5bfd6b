"""
In-process publish/subscribe event bus.

Every subscription owns a FIFO queue and a worker task, so one handler sees
events in the order they were published while different handlers run
concurrently. Delivery is best-effort: a failing handler is logged and the
event is not redelivered.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Union

from bazaruto.events.events import Event

logger = logging.getLogger(__name__)

Handler = Callable[[Event], Union[Awaitable[None], None]]

_STOP = object()


@dataclass
class _Subscription:
    name: str
    handler: Handler
    event_types: FrozenSet[str]
    queue: Optional[asyncio.Queue] = None
    worker: Optional[asyncio.Task] = None
    loop: Optional[asyncio.AbstractEventLoop] = None
    delivered: int = 0
    failed: int = 0

    def wants(self, event_type: str) -> bool:
        return not self.event_types or event_type in self.event_types


class EventBus:
    def __init__(self, close_timeout: float = 5.0) -> None:
        self._subs: Dict[str, _Subscription] = {}
        self._close_timeout = close_timeout
        self._closed = False
        self._published = 0

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def subscribe(self, name: str, handler: Handler, *event_types: str) -> None:
        """Register ``handler`` under ``name``. No event types means all events."""
        if self._closed:
            raise RuntimeError("event bus is closed")
        if name in self._subs:
            raise ValueError(f"handler already subscribed: {name}")
        self._subs[name] = _Subscription(name=name, handler=handler, event_types=frozenset(event_types))
        logger.debug("Subscribed %s to %s", name, ", ".join(event_types) or "all events")

    async def unsubscribe(self, name: str) -> None:
        """Remove a handler; events already queued for it are still delivered."""
        sub = self._subs.pop(name, None)
        if sub is None:
            raise KeyError(name)
        await self._stop(sub, self._close_timeout)

    def subscriptions(self) -> List[str]:
        return sorted(self._subs)

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #
    async def publish(self, event: Event) -> None:
        """Schedule delivery to every matching handler and return."""
        if self._closed:
            raise RuntimeError("event bus is closed")
        self._published += 1
        for sub in list(self._subs.values()):
            if not sub.wants(event.type):
                continue
            queue = self._ensure_worker(sub)
            queue.put_nowait(event)

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until every queued event has been handled."""
        queues = [s.queue for s in self._subs.values() if s.queue is not None and s.loop is _current_loop()]
        if queues:
            await asyncio.wait_for(asyncio.gather(*(q.join() for q in queues)), timeout)

    async def close(self, timeout: Optional[float] = None) -> None:
        """Stop accepting events and drain queued deliveries within ``timeout`` seconds."""
        if self._closed:
            return
        self._closed = True
        subs = list(self._subs.values())
        self._subs.clear()
        await asyncio.gather(*(self._stop(s, timeout if timeout is not None else self._close_timeout) for s in subs))

    def stats(self) -> Dict[str, Any]:
        return {
            "published": self._published,
            "handlers": {
                s.name: {"delivered": s.delivered, "failed": s.failed, "queued": s.queue.qsize() if s.queue else 0}
                for s in self._subs.values()
            },
        }

    # ------------------------------------------------------------------ #
    # Workers
    # ------------------------------------------------------------------ #
    def _ensure_worker(self, sub: _Subscription) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        if sub.queue is None or sub.loop is not loop or sub.worker is None or sub.worker.done():
            if sub.loop is not None and sub.loop is not loop:
                logger.debug("Event loop changed; restarting worker for %s", sub.name)
            sub.queue = asyncio.Queue()
            sub.loop = loop
            sub.worker = loop.create_task(self._run(sub, sub.queue), name=f"event-handler:{sub.name}")
        return sub.queue

    async def _run(self, sub: _Subscription, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            try:
                if event is _STOP:
                    return
                await self._deliver(sub, event)
            finally:
                queue.task_done()

    async def _deliver(self, sub: _Subscription, event: Event) -> None:
        try:
            result = sub.handler(event)
            if inspect.isawaitable(result):
                await result
            sub.delivered += 1
        except Exception as e:
            sub.failed += 1
            logger.warning("Event handler %s failed on %s (%s): %s", sub.name, event.type, event.id, e, exc_info=True)

    async def _stop(self, sub: _Subscription, timeout: float) -> None:
        if sub.worker is None or sub.worker.done() or sub.loop is not _current_loop():
            return
        sub.queue.put_nowait(_STOP)
        try:
            await asyncio.wait_for(asyncio.shield(sub.worker), timeout)
        except asyncio.TimeoutError:
            logger.warning("Event handler %s did not drain within %.1fs; cancelling", sub.name, timeout)
            sub.worker.cancel()
            await asyncio.gather(sub.worker, return_exceptions=True)


def _current_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


async def log_event(event: Event) -> None:
    """Audit subscriber registered at startup."""
    logger.info("event %s aggregate=%s id=%s", event.type, event.aggregate_id, event.id)


async def publish_safely(bus: Optional[EventBus], event: Event) -> bool:
    """Publish ``event``; failures are logged and never raised."""
    if bus is None:
        return False
    try:
        await bus.publish(event)
        return True
    except Exception as e:
        logger.warning("Failed to publish %s for %s: %s", event.type, event.aggregate_id, e)
        return False
