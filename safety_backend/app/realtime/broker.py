"""
broker.py — In-process publish/subscribe for marker change events.

Every open map (one ``GET /events`` connection) is an Observer. The
EventBroker owns the set of live observers and fans each ChangeEvent out
to all of them.

═══════════════════════════════════════════════════════════════════════════
DELIVERY MODEL
═══════════════════════════════════════════════════════════════════════════

    publish(event)
        │
        ├── snapshot ObserverSet under the registry lock
        │
        └── for each observer in snapshot:
                queue.put_nowait(event)   ── ok   → delivered
                                          └─ full / closed → drop observer

    Observer.receive()  ← awaited by the transport, one per connection

Rules:
    • Delivery is a non-blocking enqueue, so a stalled connection never
      delays the others. A full queue is treated as terminal for that
      observer.
    • Publishes are serialized by a second lock, so every observer sees
      events in the order they were published.
    • Observers that subscribe while a publish is in flight are not in
      its snapshot and do not receive it.
    • Nothing is retained: with no observers, an event is dropped.

All methods are synchronous and must be called from the event loop that
owns the observers' queues.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from typing import List, Optional, Set

from safety_backend.app.core.errors import ObserverLimitError
from safety_backend.app.markers.models import ChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

_CLOSE = object()
_ids = itertools.count(1)


class ObserverClosed(Exception):
    """Raised by Observer.receive() once the observer has been closed."""


class Observer:
    """
    One live subscriber: a bounded FIFO of pending events plus a closed flag.

    The transport awaits :meth:`receive` (or iterates the observer with
    ``async for``) and writes each event to its connection.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.id = next(_ids)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size + 1)
        self._capacity = queue_size
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, event: ChangeEvent) -> bool:
        """Enqueue ``event``; False if the observer is closed or backed up."""
        if self._closed or self._queue.qsize() >= self._capacity:
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        """Mark closed and wake any pending receive(). Idempotent."""
        if self._closed:
            return
        self._closed = True
        # one slot above capacity is reserved for the close marker
        self._queue.put_nowait(_CLOSE)

    async def receive(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """
        Wait for the next event.

        Returns None if ``timeout`` elapses first; raises ObserverClosed
        once the observer is closed and its queue is drained up to the
        close marker.
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout)
            except asyncio.TimeoutError:
                return None
        if item is _CLOSE:
            raise ObserverClosed(self.id)
        return item

    def __aiter__(self) -> "Observer":
        return self

    async def __anext__(self) -> ChangeEvent:
        try:
            event = await self.receive()
        except ObserverClosed:
            raise StopAsyncIteration
        return event

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Observer #{self.id} {state} pending={self.pending}>"


class EventBroker:
    """
    Owner of the live ObserverSet.

    Parameters
    ----------
    queue_size : int
        Events buffered per observer before it is considered broken.
    max_observers : int
        Subscription cap; 0 means unlimited.
    """

    def __init__(
        self,
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        max_observers: int = 0,
    ):
        self.queue_size = queue_size
        self.max_observers = max_observers
        self._observers: Set[Observer] = set()
        self._registry_lock = threading.Lock()
        self._publish_lock = threading.Lock()

    @property
    def observer_count(self) -> int:
        with self._registry_lock:
            return len(self._observers)

    def subscribe(self) -> Observer:
        """Register and return a new observer."""
        observer = Observer(self.queue_size)
        with self._registry_lock:
            if self.max_observers and len(self._observers) >= self.max_observers:
                raise ObserverLimitError(self.max_observers)
            self._observers.add(observer)
            count = len(self._observers)
        logger.info(
            "Observer #%d subscribed (%d live)", observer.id, count,
            extra={"observer_count": count},
        )
        return observer

    def unsubscribe(self, observer: Observer) -> None:
        """Remove and close ``observer``; safe to call repeatedly."""
        with self._registry_lock:
            present = observer in self._observers
            self._observers.discard(observer)
            count = len(self._observers)
        observer.close()
        if present:
            logger.info(
                "Observer #%d unsubscribed (%d live)", observer.id, count,
                extra={"observer_count": count},
            )

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver ``event`` to every observer live at call time.

        Returns
        -------
        int
            Number of observers the event was delivered to.
        """
        with self._publish_lock:
            with self._registry_lock:
                snapshot = list(self._observers)

            delivered = 0
            broken: List[Observer] = []
            for observer in snapshot:
                if observer.deliver(event):
                    delivered += 1
                else:
                    broken.append(observer)

        for observer in broken:
            logger.warning(
                "Dropping observer #%d: delivery failed (closed=%s, pending=%d)",
                observer.id, observer.closed, observer.pending,
            )
            self.unsubscribe(observer)

        logger.debug(
            "Published %s to %d/%d observers",
            event.kind.value, delivered, len(snapshot),
            extra={"event_type": event.kind.value, "observer_count": delivered},
        )
        return delivered

    def close(self) -> None:
        """Close every observer (application shutdown)."""
        with self._registry_lock:
            observers = list(self._observers)
            self._observers.clear()
        for observer in observers:
            observer.close()
        if observers:
            logger.info("Closed %d observers on shutdown", len(observers))
