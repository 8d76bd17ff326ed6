"""
sse.py — Server-Sent Events framing for the marker change feed.

Frame format (one per ChangeEvent):

    data: {"type": "NEW_MARKER", "data": {...}}\\n\\n

Idle connections get a comment line every keepalive interval so proxies
keep them open and disconnects are noticed without waiting for the next
marker change.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Awaitable, Callable

from safety_backend.app.markers.models import ChangeEvent
from safety_backend.app.realtime.broker import EventBroker, Observer, ObserverClosed

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

KEEPALIVE_FRAME = ": keepalive\n\n"


def format_sse(event: ChangeEvent) -> str:
    return f"data: {event.to_json()}\n\n"


async def stream_events(
    broker: EventBroker,
    observer: Observer,
    is_disconnected: Callable[[], Awaitable[bool]],
    *,
    keepalive_seconds: float = 15.0,
) -> AsyncIterator[str]:
    """
    Yield SSE frames for ``observer`` until the client goes away.

    The observer is always unsubscribed on exit, whether the client
    disconnected, the server cancelled the response, or the broker
    dropped the observer.
    """
    try:
        while True:
            if await is_disconnected():
                logger.debug("Observer #%d client disconnected", observer.id)
                break
            try:
                event = await observer.receive(timeout=keepalive_seconds)
            except ObserverClosed:
                break
            if event is None:
                yield KEEPALIVE_FRAME
                continue
            yield format_sse(event)
    finally:
        broker.unsubscribe(observer)
